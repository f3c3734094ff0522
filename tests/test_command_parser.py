import pytest

from relay.core.commands import CommandParser

parser = CommandParser("!relay", "@relay:example.org")


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("!relay done", ["done"]),
        ("  !relay   rename  New topic ", ["rename", "New", "topic"]),
        ("@relay:example.org: done", ["done"]),
        ("@relay:example.org:done", ["done"]),
        ("@relay:example.org close", ["close"]),
        ("@relay: complete", ["complete"]),
        ("!relay", []),
        ("!relaydone", None),
        ("hello there", None),
        ("", None),
    ],
)
def test_parse(message, expected):
    assert parser.parse(message) == expected


def test_read_and_is_close():
    assert parser.read("!relay DONE") == "done"
    assert parser.read("hi") == ""
    assert parser.is_close("@relay: close")
    assert not parser.is_close("!relay rename done")


def test_help_text_uses_configured_prefix():
    text = CommandParser("!desk", "@relay:example.org").help_text()

    assert text.startswith("The relay can perform the following actions")
    assert "`!desk rename TEXT`" in text


def test_help_text_with_preamble():
    text = parser.help_text("no mapping for $root")

    assert text.startswith("no mapping for $root\n\nThe relay can perform")
