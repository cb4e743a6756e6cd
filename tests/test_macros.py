from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from mqtt_shell.config import MacroSpec
from mqtt_shell.core.macros import MacroManager
from mqtt_shell.errors import MacroConfigError


@dataclass
class _FakeOutput:
    chunks: list[str] = field(default_factory=list)

    def write(self, text: str) -> int:
        self.chunks.append(text)
        return len(text)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


def _manager(**specs: MacroSpec) -> tuple[MacroManager, _FakeOutput]:
    out = _FakeOutput()
    manager = MacroManager(specs, out)
    manager.validate()
    return manager, out


def test_greet_example() -> None:
    manager, out = _manager(greet=MacroSpec(arguments=["name"], commands=["pub hello/$1 Hi $1"]))

    assert manager.resolve("greet world") == ["pub hello/world Hi world"]
    assert manager.resolve("greet world") == ["pub hello/world Hi world"]
    assert out.chunks == []


def test_varargs_repeat_the_command_block() -> None:
    spec = MacroSpec(
        arguments=["first", "second", "value"],
        varargs=True,
        commands=["pub $1/$3 $2", "pub log $3"],
    )
    manager, _ = _manager(multi=spec)

    lines = manager.resolve("multi a b x y z")

    assert len(lines) == 6
    assert lines == [
        "pub a/x b",
        "pub log x",
        "pub a/y b",
        "pub log y",
        "pub a/z b",
        "pub log z",
    ]


def test_escaped_dollar_is_kept() -> None:
    manager, _ = _manager(price=MacroSpec(arguments=["value"], commands=[r"pub price \$1 $1"]))

    assert manager.resolve("price 5") == ["pub price $1 5"]


def test_pipe_suffix_is_attached_to_sub_lines() -> None:
    spec = MacroSpec(arguments=["topic"], commands=["sub $1/#", "pub $1/ping now"])
    manager, _ = _manager(watch=spec)

    assert manager.resolve("watch dev |& grep x") == ["sub dev/# |& grep x", "pub dev/ping now"]


def test_zero_argument_macro_emits_its_commands() -> None:
    manager, _ = _manager(all=MacroSpec(commands=["sub a", "sub b"]))

    assert manager.resolve("all | cat") == ["sub a | cat", "sub b | cat"]


def test_argument_count_is_checked() -> None:
    manager, out = _manager(greet=MacroSpec(arguments=["name"], commands=["pub hello/$1 Hi $1"]))

    assert manager.resolve("greet") == []
    assert manager.resolve("greet a b") == []
    assert out.text == "invalid macro arguments\nusage: greet name\n" * 2


def test_unknown_macro() -> None:
    manager, out = _manager()

    assert manager.resolve("nope x") == []
    assert out.text == "unknown macro\n"


def test_unparsable_invocation_is_passed_through() -> None:
    manager, out = _manager()

    assert manager.resolve("greet 'open") == ["greet 'open"]
    assert out.chunks == []


def test_is_macro_skips_builtins() -> None:
    manager, _ = _manager()

    assert not manager.is_macro("pub a b")
    assert not manager.is_macro("sub a")
    assert not manager.is_macro("list")
    assert not manager.is_macro(".ls")
    assert manager.is_macro("listing")
    assert manager.is_macro("publish a")


def test_script_macro_with_log() -> None:
    spec = MacroSpec(arguments=["name"], script="{{ log('hello %s', Arg1) }}pub greet/{{ Arg1 }} hi")
    manager, out = _manager(script=spec)

    assert manager.resolve("script world") == ["pub greet/world hi"]
    assert out.text == "hello world\n"


def test_script_macro_with_exec() -> None:
    spec = MacroSpec(arguments=["topic"], script="pub {{ Arg1 }} {{ exec('echo hi') | trim }}")
    manager, _ = _manager(now=spec)

    assert manager.resolve("now a/b") == ["pub a/b hi"]


def test_script_macro_varargs_and_lines() -> None:
    spec = MacroSpec(arguments=["prefix", "topic"], varargs=True, script="sub {{ Arg1 }}/{{ Arg2 }}\npub x {{ Arg2 }}")
    manager, _ = _manager(many=spec)

    assert manager.resolve("many p a b | cat") == ["sub p/a | cat", "pub x a", "sub p/b | cat", "pub x b"]


def test_script_failure_is_reported() -> None:
    manager, out = _manager(broken=MacroSpec(script="pub t {{ exec('false') }}"))

    assert manager.resolve("broken") == []
    assert out.text == "Error while execute macro script: false: exit status 1\n"


def test_exec_rejects_file_redirects(tmp_path) -> None:
    manager, out = _manager(write=MacroSpec(script=f"{{{{ exec('echo x > {tmp_path / 'f'}') }}}}"))

    assert manager.resolve("write") == []
    assert "file redirection" in out.text
    assert not (tmp_path / "f").exists()


def test_print_macros_sorted() -> None:
    manager, out = _manager(
        zeta=MacroSpec(description="last", commands=["list"]),
        alpha=MacroSpec(description="first", commands=["list"]),
    )

    manager.print_macros()

    assert out.text == "alpha - first\nzeta - last\n"


@pytest.mark.parametrize("name", ["pub", "sub", "unsub", "list", ".ls", ".lsc", ".macro", "exit"])
def test_reserved_names_are_rejected(name: str) -> None:
    manager = MacroManager({name: MacroSpec(commands=["list"])}, _FakeOutput())

    with pytest.raises(MacroConfigError, match="reserved"):
        manager.validate()


@pytest.mark.parametrize(
    ("spec", "message"),
    [
        (MacroSpec(), "nor 'script'"),
        (MacroSpec(commands=["list"], script="list"), "only 'commands' or 'script'"),
        (MacroSpec(script="{{ unknown_name }}"), "unknown names in script: unknown_name"),
        (MacroSpec(script="{{ Arg1 "), "unable to parse script"),
    ],
)
def test_invalid_macros_are_rejected(spec: MacroSpec, message: str) -> None:
    manager = MacroManager({"macro": spec}, _FakeOutput())

    with pytest.raises(MacroConfigError, match=message):
        manager.validate()
