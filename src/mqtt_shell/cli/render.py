"""CLI renderer for mqtt-shell."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import CompleteEvent, Completer, Completion
from prompt_toolkit.document import Document
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.history import FileHistory, InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape

from mqtt_shell.core.commands import BuiltinCommand

QOS_FLAG = "-q"
RETAIN_FLAG = "-r"
QOS_LEVELS = ("0", "1", "2")


class ShellCompleter(Completer):
    """Completes command names, macro names, flags and subscribed topics."""

    def __init__(self, macro_names: Iterable[str], topics: Callable[[], list[str]]) -> None:
        self.macro_names = sorted(macro_names)
        self.topics = topics

    def get_completions(self, document: Document, complete_event: CompleteEvent) -> Iterable[Completion]:
        words = document.text_before_cursor.split(" ")
        current = words[-1]
        if len(words) == 1:
            candidates = [*self.macro_names, *(str(command) for command in BuiltinCommand)]
        else:
            candidates = self._arguments(words[0], words[-2])
        for candidate in candidates:
            if candidate.startswith(current):
                yield Completion(candidate, start_position=-len(current))

    def _arguments(self, command: str, previous: str) -> list[str]:
        if previous == QOS_FLAG and command in (BuiltinCommand.PUB, BuiltinCommand.SUB):
            return list(QOS_LEVELS)
        if command == BuiltinCommand.PUB:
            return [QOS_FLAG, RETAIN_FLAG]
        if command == BuiltinCommand.SUB:
            return [QOS_FLAG]
        if command == BuiltinCommand.UNSUB:
            return self.topics()
        return []


class Renderer:
    """Thread-safe shell output plus the interactive prompt."""

    def __init__(self, prompt: str = "» ", history_file: Path | None = None, console: Console | None = None) -> None:
        self.console: Console = console or Console()
        self.prompt = prompt
        self.history_file = history_file
        self.completer: Completer | None = None
        self._prompt_session: PromptSession[str] | None = None
        self._print_lock = threading.Lock()

    def write(self, text: str) -> int:
        """Append raw text (ANSI escapes included) to the terminal."""
        with self._print_lock:
            stream = self.console.file
            stream.write(text)
            stream.flush()
        return len(text)

    def error(self, message: str) -> None:
        """Render an error message."""
        with self._print_lock:
            self.console.print(f"[bold red]Error:[/bold red] {escape(message)}", highlight=False)

    def get_user_input(self) -> str:
        """Prompt user for input."""
        with patch_stdout(raw=True):
            return self._session().prompt(ANSI(self.prompt))

    def _session(self) -> PromptSession[str]:
        if self._prompt_session is None:
            self._prompt_session = PromptSession(history=self._history(), completer=self.completer)
        return self._prompt_session

    def _history(self) -> FileHistory | InMemoryHistory:
        if self.history_file is None:
            return InMemoryHistory()
        self.history_file.parent.mkdir(parents=True, exist_ok=True)
        return FileHistory(str(self.history_file))


def create_cli_renderer(prompt: str, history_file: Path | None = None) -> Renderer:
    """Create and return a Renderer instance."""
    return Renderer(prompt=prompt, history_file=history_file)
