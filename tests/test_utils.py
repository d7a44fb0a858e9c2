"""Tests for shell escaping and small helpers."""

import os
import shlex
import shutil
import subprocess
from datetime import date

import pytest
from arkki.utils import datestamp
from arkki.utils import render_command
from arkki.utils import shell_escape
from arkki.utils import shell_escape_bytes

TRICKY = [
    "",
    "plain",
    "/home/user/My Documents",
    "*.tmp",
    "$HOME",
    "`id`",
    "$(rm -rf /)",
    "a;b&&c||d",
    "it's \"quoted\"",
    "tab\there",
    "line\nbreak",
    "trailing\\",
    "~user",
    "#comment",
    "{a,b}",
    "[abc]?",
    "me@example.com",
    "-rf",
]


class TestShellEscape:
    """Test shell_escape."""

    def test_safe_characters_are_kept(self):
        """Test characters of the safe set pass through unchanged."""
        value = "abcXYZ019-_,.=@/+:%"
        assert shell_escape(value) == value

    def test_empty_input(self):
        assert shell_escape("") == ""

    def test_unsafe_characters_are_backslashed(self):
        assert shell_escape("*.tmp") == "\\*.tmp"
        assert shell_escape("a b") == "a\\ b"
        assert shell_escape("$x") == "\\$x"
        assert shell_escape("a;b") == "a\\;b"

    def test_newline_is_quoted(self):
        assert shell_escape("a\nb") == "a'\n'b"

    @pytest.mark.parametrize("value", TRICKY)
    def test_round_trip_through_shlex(self, value):
        """Test the escaped form is one word that splits back to the input."""
        assert shlex.split(shell_escape(value)) == ([value] if value else [])

    def test_every_ascii_character_round_trips(self):
        value = "".join(chr(code) for code in range(1, 128))
        assert shlex.split(shell_escape(value)) == [value]

    @pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
    @pytest.mark.parametrize("value", [v for v in TRICKY if v])
    def test_round_trip_through_posix_shell(self, value):
        """Test a real shell expands the escaped word back to the input."""
        result = subprocess.run(
            ["sh", "-c", "printf '%s' " + shell_escape(value)],
            capture_output=True,
            text=True,
            check=True,
        )
        assert result.stdout == value

    def test_non_ascii_text_is_escaped_per_character(self):
        assert shell_escape("caf\u00e9") == "caf\\\u00e9"
        assert shlex.split(shell_escape("caf\u00e9 bar")) == ["caf\u00e9 bar"]

    def test_undecodable_bytes_are_escaped_bytewise(self):
        """Test surrogate-escaped path bytes get one backslash per byte."""
        raw = b"caf\xe9 x"
        escaped = shell_escape(os.fsdecode(raw))
        assert os.fsencode(escaped) == b"caf\\\xe9\\ x"
        assert os.fsencode(escaped) == shell_escape_bytes(raw)

    @pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
    def test_undecodable_bytes_round_trip_through_posix_shell(self):
        raw = b"/tmp/caf\xe9 \xff$x"
        result = subprocess.run(
            [b"sh", b"-c", b"printf '%s' " + os.fsencode(shell_escape(os.fsdecode(raw)))],
            capture_output=True,
            check=True,
        )
        assert result.stdout == raw


class TestShellEscapeBytes:
    """Test shell_escape_bytes."""

    def test_defined_for_every_byte(self):
        raw = bytes(range(256))
        escaped = shell_escape_bytes(raw)
        assert len(escaped) > len(raw)
        assert escaped.startswith(b"\\\x00")

    def test_matches_text_version_for_ascii(self):
        value = "a b*c\nd@e"
        assert shell_escape_bytes(value.encode()) == shell_escape(value).encode()


class TestHelpers:
    """Test render_command and datestamp."""

    def test_render_command(self):
        assert render_command(["tar", "--exclude=*.tmp", "/a b"]) == "tar --exclude=\\*.tmp /a\\ b"

    def test_datestamp(self):
        assert datestamp(date(2024, 3, 9)) == "2024-03-09"
