from __future__ import annotations

from dataclasses import dataclass, field

from mqtt_shell.core.writers import PrefixWriter


@dataclass
class _FakeOutput:
    chunks: list[str] = field(default_factory=list)

    def write(self, text: str) -> int:
        self.chunks.append(text)
        return len(text)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


def test_prefix_is_written_once() -> None:
    out = _FakeOutput()
    writer = PrefixWriter("topic ", out)

    writer.write(b"first ")
    writer.write(b"second\n")
    writer.flush()

    assert out.text == "topic first second\n"
    assert out.chunks[0].startswith("topic ")
    assert not out.chunks[1].startswith("topic ")


def test_nothing_written_without_output() -> None:
    out = _FakeOutput()
    writer = PrefixWriter("topic ", out)

    writer.write(b"")
    writer.flush()

    assert out.chunks == []
    assert not writer.prefix_written


def test_multibyte_characters_split_across_chunks() -> None:
    out = _FakeOutput()
    writer = PrefixWriter("> ", out)
    encoded = "héllo".encode()

    writer.write(encoded[:2])
    writer.write(encoded[2:])
    writer.flush()

    assert out.text == "> héllo"
