"""Line reading loop feeding the processor."""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable, Iterable, Iterator
from itertools import chain

from loguru import logger

from mqtt_shell.broker import MqttBroker
from mqtt_shell.cli.render import Renderer, ShellCompleter
from mqtt_shell.config import Settings
from mqtt_shell.core.commands import BuiltinCommand
from mqtt_shell.core.decorators import DecoratorPool, detect_color_level
from mqtt_shell.core.interpreter import heredoc_marker
from mqtt_shell.core.macros import MacroManager
from mqtt_shell.core.processor import Processor

SIGNAL_POLL_SECONDS = 0.5


def purge(line: str) -> str:
    """Drop non-printable characters and surrounding whitespace."""
    return "".join(char for char in line if char.isprintable()).strip()


def expand(lines: Iterable[str], macros: MacroManager) -> Iterator[str]:
    """Replace macro invocations by the lines they resolve to."""
    for line in lines:
        if macros.is_macro(line):
            yield from macros.resolve(line)
        else:
            yield line


def read_lines(read_line: Callable[[], str], macros: MacroManager) -> Iterator[str]:
    """Yield shell lines typed by the user until ``exit`` or end of input."""
    while True:
        try:
            line = purge(read_line())
        except KeyboardInterrupt:
            continue
        except EOFError:
            return
        if not line:
            continue

        marker = heredoc_marker(line)
        if marker is not None:
            line = _read_heredoc(line, marker, read_line)

        if line == BuiltinCommand.EXIT:
            return
        if line == BuiltinCommand.MACRO:
            macros.print_macros()
            continue
        yield from expand([line], macros)


def _read_heredoc(first: str, marker: str, read_line: Callable[[], str]) -> str:
    lines = [first]
    while True:
        try:
            line = read_line()
        except (KeyboardInterrupt, EOFError):
            break
        lines.append(line)
        if line.endswith(marker):
            break
    return "\n".join(lines)


def wait_for_signal(processor: Processor) -> Iterator[str]:
    """Keep the input open until SIGINT or SIGTERM while subscriptions are active."""
    if not processor.has_subscriptions():
        return
    stop = threading.Event()

    def handle(signum: int, _frame: object) -> None:
        logger.debug("received signal {}", signum)
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, handle)
    while not stop.wait(SIGNAL_POLL_SECONDS):
        pass
    yield from ()


def run_shell(settings: Settings, renderer: Renderer) -> None:
    """Connect to the broker and run the shell until the input ends."""
    macros = MacroManager(settings.macros, renderer)
    macros.validate()

    decorators = DecoratorPool.from_color_level(detect_color_level(renderer.console), settings.color_blacklist)
    broker = MqttBroker(settings, renderer)
    broker.connect()
    try:
        processor = Processor(
            renderer,
            broker,
            decorators,
            publish_qos=settings.publish_qos,
            subscribe_qos=settings.subscribe_qos,
        )
        broker.on_reconnect = processor.on_reconnect
        renderer.completer = ShellCompleter(macros.specs, processor.subscriptions)

        start = expand(settings.commands, macros)
        if settings.non_interactive:
            lines = chain(start, wait_for_signal(processor))
        else:
            lines = chain(start, read_lines(renderer.get_user_input, macros))
        processor.process(lines)
    finally:
        broker.close()
