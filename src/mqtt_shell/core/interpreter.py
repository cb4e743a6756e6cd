"""Shell-like line interpretation into command chains."""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field

from mqtt_shell.errors import InterpretError

LINK_OUT = "|"
LINK_OUT_AND_ERR = "|&"
LINK_REDIRECT = ">"
LINK_REDIRECT_ERR = ">&"
LINK_APPEND = ">>"
LINK_APPEND_ERR = ">>&"

LINKS = frozenset({LINK_OUT, LINK_OUT_AND_ERR, LINK_REDIRECT, LINK_REDIRECT_ERR, LINK_APPEND, LINK_APPEND_ERR})
ERROR_LINKS = frozenset({LINK_OUT_AND_ERR, LINK_REDIRECT_ERR, LINK_APPEND_ERR})
LONG_TERM_MARKER = "&"

_HEREDOC_RE = re.compile(r"(?:^|\s)<<(\S+)\s*$")


@dataclass
class Command:
    """One stage of a chain, or the target file of a trailing redirect."""

    name: str
    arguments: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return shlex.join([self.name, *self.arguments])


@dataclass
class Chain:
    """Parsed representation of one input line."""

    commands: list[Command] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    raw_tokens: list[str] = field(default_factory=list)
    heredoc: bool = False

    @property
    def is_appending(self) -> bool:
        """Whether the chain ends in a file redirect."""
        return bool(self.links) and self.links[-1].startswith(">")

    @property
    def is_long_term(self) -> bool:
        """Whether the line ended with a bare ``&``."""
        return bool(self.raw_tokens) and not self.heredoc and self.raw_tokens[-1] == LONG_TERM_MARKER

    @property
    def appends_to(self) -> str | None:
        return self.commands[-1].name if self.is_appending and self.commands else None


def interpret_line(line: str) -> Chain:
    """Split one input line into commands joined by link operators."""

    head, body = split_heredoc(line)
    tokens = tokenize(head)

    chain = Chain(raw_tokens=list(tokens), heredoc=body is not None)
    groups: list[list[str]] = [[]]
    for token in tokens:
        if token in LINKS:
            chain.links.append(token)
            groups.append([])
        else:
            groups[-1].append(token)
    if body is not None:
        chain.raw_tokens.append(body)
        groups[-1].append(body)

    if any(link.startswith(">") for link in chain.links[:-1]):
        raise InterpretError("invalid syntax")

    chain.commands = [Command(name=group[0], arguments=group[1:]) for group in groups if group]

    if chain.commands and chain.is_long_term:
        last = chain.commands[-1]
        if not last.arguments:
            raise InterpretError("invalid syntax")
        last.arguments = last.arguments[:-1]

    return chain


def tokenize(text: str) -> list[str]:
    """Split text into words using posix shell quoting rules."""

    lexer = shlex.shlex(text, posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    tokens: list[str] = []
    try:
        for token in lexer:
            tokens.append(token)
    except ValueError as exc:
        if lexer.state == "'":
            raise InterpretError("Unterminated single-quoted string") from exc
        if lexer.state == '"':
            raise InterpretError("Unterminated double-quoted string") from exc
        raise InterpretError(str(exc)) from exc
    return tokens


def heredoc_marker(line: str) -> str | None:
    """Return the marker if the first line of ``line`` opens a heredoc."""

    head = line.split("\n", 1)[0]
    match = _HEREDOC_RE.search(head)
    return match.group(1) if match else None


def split_heredoc(line: str) -> tuple[str, str | None]:
    """Separate ``cmd <<EOF\\n...EOF`` into the command text and the heredoc body."""

    head, newline, rest = line.partition("\n")
    match = _HEREDOC_RE.search(head)
    if match is None or not newline:
        return line, None
    marker = match.group(1)
    if rest.endswith(marker):
        rest = rest[: -len(marker)]
    return head[: match.start()], rest
