"""Tests for the interactive line reader."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from prompt_toolkit.completion import CompleteEvent
from prompt_toolkit.document import Document

from mqtt_shell.cli.live import expand, purge, read_lines, wait_for_signal
from mqtt_shell.cli.render import ShellCompleter
from mqtt_shell.config import MacroSpec
from mqtt_shell.core.macros import MacroManager


@dataclass
class _FakeOutput:
    chunks: list[str] = field(default_factory=list)

    def write(self, text: str) -> int:
        self.chunks.append(text)
        return len(text)


@dataclass
class _FakeProcessor:
    active: bool = False

    def has_subscriptions(self) -> bool:
        return self.active


def _reader(*lines: str | BaseException) -> Callable[[], str]:
    pending = list(lines)

    def read_line() -> str:
        if not pending:
            raise EOFError
        item = pending.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    return read_line


def _macros(out: _FakeOutput | None = None) -> MacroManager:
    manager = MacroManager(
        {"greet": MacroSpec(description="say hi", arguments=["name"], commands=["pub hello/$1 Hi $1"])},
        out or _FakeOutput(),
    )
    manager.validate()
    return manager


def test_purge_strips_non_printable_and_whitespace() -> None:
    assert purge("\x00   list      ") == "list"
    assert purge("pub a\tb") == "pub ab"


def test_lines_are_cleaned_and_expanded() -> None:
    read_line = _reader("\x00  list  ", "", "   ", "greet world", "pub a b")

    assert list(read_lines(read_line, _macros())) == ["list", "pub hello/world Hi world", "pub a b"]


def test_exit_ends_the_input() -> None:
    read_line = _reader("list", "exit", "pub never sent")

    assert list(read_lines(read_line, _macros())) == ["list"]


def test_interrupt_is_ignored() -> None:
    read_line = _reader(KeyboardInterrupt(), "list")

    assert list(read_lines(read_line, _macros())) == ["list"]


def test_heredoc_lines_are_joined_verbatim() -> None:
    read_line = _reader("pub a/topic <<EOF", "  Multiline  ", "\tkeeps\ttabs", "EOF", "list")

    assert list(read_lines(read_line, _macros())) == [
        "pub a/topic <<EOF\n  Multiline  \n\tkeeps\ttabs\nEOF",
        "list",
    ]


def test_heredoc_terminated_on_content_line() -> None:
    read_line = _reader("pub a <<EOF", '{"key": "value"}EOF')

    assert list(read_lines(read_line, _macros())) == ['pub a <<EOF\n{"key": "value"}EOF']


def test_macro_list_is_printed() -> None:
    out = _FakeOutput()
    read_line = _reader(".macro")

    assert list(read_lines(read_line, _macros(out))) == []
    assert out.chunks == ["greet - say hi\n"]


def test_start_commands_are_expanded() -> None:
    assert list(expand(["greet a", "list"], _macros())) == ["pub hello/a Hi a", "list"]


def test_wait_for_signal_returns_without_subscriptions() -> None:
    assert list(wait_for_signal(_FakeProcessor(active=False))) == []  # type: ignore[arg-type]


def _complete(completer: ShellCompleter, text: str) -> list[str]:
    return [completion.text for completion in completer.get_completions(Document(text), CompleteEvent())]


def test_completer_commands_and_macros() -> None:
    completer = ShellCompleter(["greet", "publish-all"], lambda: [])

    assert _complete(completer, "pu") == ["publish-all", "pub"]
    assert _complete(completer, "gr") == ["greet"]


def test_completer_arguments() -> None:
    completer = ShellCompleter([], lambda: ["a/b", "c/d"])

    assert _complete(completer, "unsub ") == ["a/b", "c/d"]
    assert _complete(completer, "unsub c") == ["c/d"]
    assert _complete(completer, "pub -q ") == ["0", "1", "2"]
    assert _complete(completer, "sub -") == ["-q"]
    assert _complete(completer, "list ") == []
