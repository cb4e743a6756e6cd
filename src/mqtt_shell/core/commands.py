"""Built-in command names and argument parsing helpers."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from mqtt_shell.errors import CommandError

VALID_QOS = (0, 1, 2)
PUB_USAGE = "Usage: pub [-r] [-q 0|1|2] <topic> <payload>"
SUB_USAGE = "Usage: sub [-q 0|1|2] <topic> [...topicN]"
UNSUB_USAGE = "Usage: unsub <topic> [...topicN]"


class BuiltinCommand(StrEnum):
    """Reserved command names. Macros must not use any of them."""

    PUB = "pub"
    SUB = "sub"
    UNSUB = "unsub"
    LIST = "list"
    HELP = ".ls"
    LIST_COLORS = ".lsc"
    MACRO = ".macro"
    EXIT = "exit"


# commands which take arguments; a macro line starting with "<name> " would shadow them
ARGUMENT_COMMANDS = frozenset({BuiltinCommand.PUB, BuiltinCommand.SUB, BuiltinCommand.UNSUB})


@dataclass(frozen=True)
class PublishArgs:
    topic: str
    payload: str
    qos: int
    retained: bool


@dataclass(frozen=True)
class SubscribeArgs:
    topics: list[str]
    qos: int


def parse_publish_args(arguments: Sequence[str], default_qos: int = 0) -> PublishArgs:
    """Parse ``[-r] [-q 0|1|2] <topic> <payload...>``; flags may be interleaved."""

    qos = default_qos
    retained = False
    positional: list[str] = []
    idx = 0
    while idx < len(arguments):
        arg = arguments[idx]
        if arg == "-r":
            retained = True
        elif arg == "-q":
            qos = _qos_at(arguments, idx, PUB_USAGE)
            idx += 1
        else:
            positional.append(arg)
        idx += 1

    if len(positional) < 2:
        raise CommandError("invalid arguments", PUB_USAGE)
    topic, payload = positional[0], " ".join(positional[1:])
    if not topic or not payload:
        raise CommandError("invalid arguments", PUB_USAGE)
    return PublishArgs(topic=topic, payload=payload, qos=qos, retained=retained)


def parse_subscribe_args(arguments: Sequence[str], default_qos: int = 0) -> SubscribeArgs:
    """Parse ``[-q 0|1|2] <topic> [...topicN]``."""

    qos = default_qos
    topics: list[str] = []
    idx = 0
    while idx < len(arguments):
        arg = arguments[idx]
        if arg == "-q":
            qos = _qos_at(arguments, idx, SUB_USAGE)
            idx += 1
        else:
            topics.append(arg)
        idx += 1

    if not topics:
        raise CommandError("invalid arguments", SUB_USAGE)
    return SubscribeArgs(topics=topics, qos=qos)


def parse_qos(value: str) -> int:
    try:
        qos = int(value)
    except ValueError as exc:
        raise CommandError(f"invalid qos level: {value}") from exc
    if qos not in VALID_QOS:
        raise CommandError("invalid qos level")
    return qos


def _qos_at(arguments: Sequence[str], idx: int, usage: str) -> int:
    if idx + 1 >= len(arguments):
        raise CommandError("invalid arguments", usage)
    try:
        return parse_qos(arguments[idx + 1])
    except CommandError as exc:
        raise CommandError(str(exc), usage) from exc
