"""Tests for the process entry point."""

import pytest
from arkki.commands import EXIT_FAILURE
from arkki.commands import EXIT_FATAL
from arkki.commands import EXIT_OK
from arkki.config import load_config

import arkki_cli


@pytest.fixture(autouse=True)
def fake_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


def run_main(argv):
    with pytest.raises(SystemExit) as excinfo:
        arkki_cli.main(argv)
    return excinfo.value.code


class TestMain:
    """Test arkki_cli.main."""

    def test_parser_options(self):
        args = arkki_cli.build_parser().parse_args(["-c", "work", "-vv", "-n", "exclude", "*.o"])
        assert args.config == "work"
        assert args.verbose == 2
        assert args.dry_run is True
        assert args.command == ["exclude", "*.o"]

    def test_unknown_option_is_fatal(self):
        assert run_main(["--no-such-option"]) == EXIT_FATAL

    def test_interactive_with_command_is_fatal(self):
        assert run_main(["-i", "backup"]) == EXIT_FATAL

    def test_verbose_and_quiet_is_fatal(self):
        assert run_main(["-v", "-q", "list"]) == EXIT_FATAL

    def test_batch_command(self, fake_home):
        assert run_main(["-c", "work", "encrypt", "me@example.com"]) == EXIT_OK
        config = load_config(fake_home / ".config" / "arkki" / "work")
        assert config.encrypt == "me@example.com"

    def test_batch_failure_exit_code(self, capsys):
        assert run_main(["restore"]) == EXIT_FAILURE
        assert "Unknown command" in capsys.readouterr().err

    def test_dry_run_backup(self, tmp_path, capsys):
        assert run_main(["-n", "backup", str(tmp_path / "a.tar")]) == EXIT_OK
        assert capsys.readouterr().out.startswith("tar -j ")

    def test_version(self, capsys):
        assert run_main(["--version"]) == EXIT_OK
        assert capsys.readouterr().out.startswith("arkki ")
