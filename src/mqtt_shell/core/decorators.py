"""Terminal color decorators used to tell concurrent topic streams apart."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from enum import Enum

from rich.console import Console

ESCAPE = "\x1b["
RESET = "\x1b[0m"
BOLD = "1"

Decorator = tuple[str, ...]


class ColorLevel(Enum):
    NONE = 0
    LEVEL_16 = 16
    LEVEL_256 = 256


def detect_color_level(console: Console | None = None) -> ColorLevel:
    """Map the color system rich detects for the terminal to a pool level."""

    console = console or Console()
    system = console.color_system
    if system in ("256", "truecolor"):
        return ColorLevel.LEVEL_256
    if system in ("standard", "windows"):
        return ColorLevel.LEVEL_16
    return ColorLevel.NONE


def build_decorators(level: ColorLevel) -> list[Decorator]:
    """Build the ordered color list for one capability level."""

    if level is ColorLevel.LEVEL_16:
        plain = [(str(code),) for code in range(30, 38)]
    elif level is ColorLevel.LEVEL_256:
        plain = [(f"38;5;{column * 16 + row}",) for row in range(15, -1, -1) for column in range(16)]
    else:
        return []
    return plain + [(*codes, BOLD) for codes in plain]


def serialize(decorator: Decorator) -> str:
    return " ".join(decorator)


def decorate(text: str, *codes: str) -> str:
    """Wrap text with one escape prefix per code and a single reset suffix."""

    prefix = "".join(f"{ESCAPE}{code}m" for code in codes)
    return f"{prefix}{text}{RESET}"


class DecoratorPool:
    """Round-robin allocator over the available color decorators."""

    def __init__(self, decorators: Iterable[Decorator] = ()) -> None:
        self._pool: list[Decorator] = list(decorators)
        self._cursor = 0
        self._lock = threading.Lock()

    @classmethod
    def from_color_level(cls, level: ColorLevel, blacklist: Iterable[str] = ()) -> DecoratorPool:
        pool = cls(build_decorators(level))
        for code in blacklist:
            pool.remove(code)
        return pool

    def __len__(self) -> int:
        return len(self._pool)

    def entries(self) -> list[Decorator]:
        with self._lock:
            return list(self._pool)

    def remove(self, code: str) -> bool:
        """Remove the first decorator whose serialized form equals ``code``."""
        with self._lock:
            for index, decorator in enumerate(self._pool):
                if serialize(decorator) == code:
                    del self._pool[index]
                    return True
        return False

    def next_decorator(self) -> Decorator | None:
        with self._lock:
            if not self._pool:
                return None
            if self._cursor >= len(self._pool):
                self._cursor = 0
            decorator = self._pool[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._pool)
            return decorator
