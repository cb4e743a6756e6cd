"""Process pipelines built from interpreted chains."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import IO, BinaryIO, Protocol, cast

from loguru import logger

from mqtt_shell.core.interpreter import ERROR_LINKS, LINK_OUT, LINK_OUT_AND_ERR, Chain, Command
from mqtt_shell.errors import PipelineError

CHUNK_SIZE = 64 * 1024

Source = bytes | BinaryIO | None


class Sink(Protocol):
    def write(self, data: bytes, /) -> object: ...


@dataclass(frozen=True)
class Stage:
    """One process of a pipeline."""

    command: Command
    merge_stderr: bool = False

    @property
    def argv(self) -> list[str]:
        return [self.command.name, *self.command.arguments]


class Pipeline:
    """Runnable chain of processes, connected stdout to stdin."""

    def __init__(self, stages: Sequence[Stage], source: Source = None, sinks: Iterable[Sink] = ()) -> None:
        self.stages = list(stages)
        self.source = source
        self.sinks = list(sinks)

    def __str__(self) -> str:
        parts: list[str] = []
        previous_merges = False
        for stage in self.stages:
            if parts:
                parts.append(LINK_OUT_AND_ERR if previous_merges else LINK_OUT)
            parts.append(str(stage.command))
            previous_merges = stage.merge_stderr
        return " ".join(parts)

    def run(self) -> None:
        """Run every stage to completion.

        Raises:
            PipelineError: a stage could not be spawned, an output sink failed or a stage exited
                with a non-zero status
        """

        if not self.stages:
            self._copy_source()
            return

        procs = self._spawn()
        feeder = self._start_feeder(procs[0])
        logger.debug("pipeline started: {}", self)
        try:
            stdout = procs[-1].stdout
            if stdout is None:
                raise PipelineError(f"{self}: output of the last stage is not readable")
            try:
                _copy(stdout, self.sinks)
            except Exception as exc:
                # no reader is left, so the stages would block on a full pipe forever
                _kill(procs)
                raise PipelineError(f"{self}: {exc}") from exc
            finally:
                stdout.close()
        finally:
            for proc in procs:
                proc.wait()
            if feeder is not None:
                feeder.join()
        logger.debug("pipeline finished: {}", self)
        self._check(procs)

    def _spawn(self) -> list[subprocess.Popen[bytes]]:
        procs: list[subprocess.Popen[bytes]] = []
        previous: IO[bytes] | None = None
        env = os.environ.copy()
        try:
            for index, stage in enumerate(self.stages):
                stdin = self._first_stdin() if index == 0 else previous
                try:
                    proc = subprocess.Popen(  # noqa: S603
                        stage.argv,
                        stdin=stdin,
                        stdout=subprocess.PIPE,
                        stderr=subprocess.STDOUT if stage.merge_stderr else subprocess.DEVNULL,
                        env=env,
                    )
                except OSError as exc:
                    raise PipelineError(f"{stage.command.name}: {exc.strerror or exc}") from exc
                if previous is not None:
                    previous.close()
                previous = proc.stdout
                procs.append(proc)
        except PipelineError:
            if previous is not None:
                previous.close()
            _kill(procs)
            for proc in procs:
                proc.wait()
            raise
        return procs

    def _first_stdin(self) -> int | IO[bytes]:
        if self.source is None:
            return subprocess.DEVNULL
        if isinstance(self.source, bytes):
            return subprocess.PIPE
        return self.source

    def _start_feeder(self, proc: subprocess.Popen[bytes]) -> threading.Thread | None:
        if not isinstance(self.source, bytes):
            return None
        # stdin is a pipe whenever the source is bytes
        stdin = cast(IO[bytes], proc.stdin)
        thread = threading.Thread(target=_feed, args=(stdin, self.source), daemon=True)
        thread.start()
        return thread

    def _copy_source(self) -> None:
        if isinstance(self.source, bytes):
            for sink in self.sinks:
                sink.write(self.source)
            _flush(self.sinks)
        elif self.source is not None:
            _copy(self.source, self.sinks)

    def _check(self, procs: list[subprocess.Popen[bytes]]) -> None:
        last_index = len(procs) - 1
        for index, (stage, proc) in enumerate(zip(self.stages, procs, strict=True)):
            code = proc.returncode
            if code == 0:
                continue
            if index < last_index and code == -signal.SIGPIPE:
                # upstream stage stopped because a later stage closed its input early
                continue
            raise PipelineError(f"{stage.command}: exit status {code}")


def build_pipeline(
    chain: Chain,
    source: Source,
    *sinks: Sink,
    offset: int = 1,
    merge_stderr: bool = False,
) -> tuple[Pipeline, Callable[[], None]]:
    """Turn a chain into a pipeline.

    ``offset`` skips the leading shell command (``sub topic``); ``merge_stderr`` sends the
    stderr of the last stage to the sinks as well. The returned cleanup callback must be
    called once the pipeline has finished.
    """

    end = len(chain.commands) - 1 if chain.is_appending else len(chain.commands)
    stages: list[Stage] = []
    for index in range(offset, end):
        link = chain.links[index] if index < len(chain.links) else None
        merge = link in ERROR_LINKS or (merge_stderr and index == end - 1)
        stages.append(Stage(command=chain.commands[index], merge_stderr=merge))

    targets: list[Sink] = list(sinks)
    cleanup: Callable[[], None] = _noop
    target_path = chain.appends_to
    if target_path is not None:
        mode = "ab" if chain.links[-1].startswith(">>") else "wb"
        try:
            target = open(target_path, mode)  # noqa: SIM115
        except OSError as exc:
            raise PipelineError(f"{target_path}: {exc.strerror or exc}") from exc
        targets.append(target)
        cleanup = target.close

    return Pipeline(stages, source, targets), cleanup


def _feed(stdin: IO[bytes], payload: bytes) -> None:
    try:
        stdin.write(payload)
    except BrokenPipeError:
        # the first stage does not consume its input
        pass
    finally:
        try:
            stdin.close()
        except BrokenPipeError:
            pass


def _copy(reader: IO[bytes] | BinaryIO, sinks: list[Sink]) -> None:
    while True:
        chunk = reader.read1(CHUNK_SIZE) if hasattr(reader, "read1") else reader.read(CHUNK_SIZE)
        if not chunk:
            break
        for sink in sinks:
            sink.write(chunk)
    _flush(sinks)


def _flush(sinks: list[Sink]) -> None:
    for sink in sinks:
        flush = getattr(sink, "flush", None)
        if flush is not None:
            flush()


def _kill(procs: list[subprocess.Popen[bytes]]) -> None:
    for proc in procs:
        if proc.poll() is None:
            proc.kill()


def _noop() -> None:
    return None
