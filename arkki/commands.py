"""Command verbs and the dispatcher that runs them."""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, TextIO

from . import __version__
from .backup import (
    BackupError,
    BackupRunner,
    InvalidRootError,
    SymlinkRootError,
    build_list_pipeline,
    build_pipeline,
    resolve_output_path,
)
from .config import (
    APP_NAME,
    COMPRESSION_CHOICES,
    Configuration,
    ConfigError,
    ConfigValueError,
    create_default_config,
    default_config_dir,
    load_config,
    load_or_create_config,
    persist_config,
    read_option,
    resolve_config_path,
    serialize_config,
)

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_FATAL = 3

# canonical verb, shortest accepted abbreviation, usage, summary
VERBS = (
    ("backup", "b", "backup [dir|file]", "Write an archive of the root directory."),
    ("init", "i", "init [name]", "Create a configuration with default values."),
    ("setroot", "s", "setroot [dir]", "Set the directory to back up (default: current directory)."),
    ("encrypt", "en", "encrypt [identifier]", "Encrypt archives for a gpg recipient; no argument disables."),
    ("exclude", "ex", "exclude [-r] [pattern...]", "Add exclude patterns, -r removes them; no argument lists them."),
    ("compress", "c", "compress [bzip2|gzip|none]", "Choose the archive compression."),
    ("output", "o", "output [dir|none]", "Set the default output directory; no argument shows it."),
    ("list", "l", "list", "Show the files a backup would contain."),
    ("print", "p", "print [name]", "Print a configuration."),
    ("help", "h", "help", "Show this help."),
    ("version", "v", "version", "Show the program version."),
    ("quit", "q", "quit", "Leave interactive mode."),
)
ALIASES = {"?": "help", "exit": "quit"}


def _abbreviations(verb: str, shortest: str) -> List[str]:
    return [verb[:length] for length in range(len(verb), len(shortest) - 1, -1)]


def build_verb_table() -> Dict[str, str]:
    table: Dict[str, str] = dict(ALIASES)
    for verb, shortest, _usage, _summary in VERBS:
        for abbreviation in _abbreviations(verb, shortest):
            table[abbreviation] = verb
    return table


VERB_TABLE = build_verb_table()


class UnknownCommandError(Exception):
    """Raised when a word does not name any command."""


def resolve_verb(word: str) -> str:
    try:
        return VERB_TABLE[word]
    except KeyError:
        raise UnknownCommandError(f"Unknown command '{word}'. Try 'help'.") from None


# ---------------------------------------------------------------------------
@dataclass
class Context:
    """Per-invocation settings shared by every command."""

    home: Path
    config_dir: Path
    config_name: Optional[str] = None
    verbose: bool = False
    quiet: bool = False
    dry_run: bool = False

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> "Context":
        environ = os.environ if environ is None else environ
        home = Path(environ.get("HOME") or Path.home())
        return cls(home=home, config_dir=default_config_dir(home), **kwargs)

    @property
    def config_path(self) -> Path:
        return resolve_config_path(self.config_name, self.config_dir)

    @property
    def profile(self) -> Optional[str]:
        """Base name of the named configuration, ``None`` for the default one."""

        if not self.config_name:
            return None
        return self.config_path.name


@dataclass
class CommandDispatcher:
    context: Context
    runner: BackupRunner = field(default_factory=BackupRunner)
    stdout: TextIO = field(default_factory=lambda: sys.stdout)
    stderr: TextIO = field(default_factory=lambda: sys.stderr)

    def __post_init__(self) -> None:
        self.handlers: Dict[str, Callable[[List[str]], None]] = {
            "backup": self.do_backup,
            "init": self.do_init,
            "setroot": self.do_setroot,
            "encrypt": self.do_encrypt,
            "exclude": self.do_exclude,
            "compress": self.do_compress,
            "output": self.do_output,
            "list": self.do_list,
            "print": self.do_print,
            "help": self.do_help,
            "version": self.do_version,
            "quit": self.do_quit,
        }

    def dispatch(self, words: Sequence[str]) -> int:
        """Run one command and return its exit code."""

        if not words:
            return EXIT_OK
        try:
            verb = resolve_verb(words[0])
            LOGGER.debug("Dispatching '%s' with arguments %s.", verb, list(words[1:]))
            self.handlers[verb](list(words[1:]))
        except (UnknownCommandError, ConfigError, BackupError, OSError, ValueError) as exc:
            self.error(str(exc))
            return EXIT_FAILURE
        return EXIT_OK

    def run_batch(self, words: Sequence[str]) -> int:
        return self.dispatch(list(words) or ["backup"])

    # ------------------------------------------------------------------
    def echo(self, message: str) -> None:
        if not self.context.quiet:
            self._write(self.stdout, message)

    def error(self, message: str) -> None:
        self._write(self.stderr, f"{APP_NAME}: {message}")

    def _write(self, stream: TextIO, text: str, end: str = "\n") -> None:
        """Write *text*, passing undecodable path bytes through unchanged."""

        try:
            stream.write(text + end)
        except UnicodeEncodeError:
            buffer = getattr(stream, "buffer", None)
            if buffer is None:
                stream.write((text + end).encode("ascii", "backslashreplace").decode("ascii"))
                return
            stream.flush()
            buffer.write(os.fsencode(text + end))
            buffer.flush()

    def _load(self) -> Configuration:
        return load_or_create_config(self.context.config_path, self.context.home)

    def _update(self, mutate: Callable[[Configuration], object]) -> Configuration:
        config = self._load()
        mutate(config)
        persist_config(config, self.context.config_path)
        return config

    # ------------------------------------------------------------------
    def do_backup(self, args: List[str]) -> None:
        config = self._load()
        target = args[0] if args else None
        output = resolve_output_path(target, config, self.context.profile)
        spec = build_pipeline(config, output, verbose=self.context.verbose)
        if self.context.dry_run:
            self._write(self.stdout, spec.render())
            return
        self.runner.run(spec)
        self.echo(f"Backup written to {output}")

    def do_list(self, args: List[str]) -> None:
        spec = build_list_pipeline(self._load())
        if self.context.dry_run:
            self._write(self.stdout, spec.render())
            return
        self.runner.run(spec)

    def do_init(self, args: List[str]) -> None:
        name = args[0] if args else self.context.config_name
        path = resolve_config_path(name, self.context.config_dir)
        create_default_config(path, self.context.home)
        self.echo(f"Created configuration {path}")

    def do_print(self, args: List[str]) -> None:
        name = args[0] if args else self.context.config_name
        path = resolve_config_path(name, self.context.config_dir)
        self._write(self.stdout, serialize_config(load_config(path)), end="")

    def do_setroot(self, args: List[str]) -> None:
        root = os.path.abspath(args[0] if args else os.getcwd())
        if os.path.islink(root):
            raise SymlinkRootError(f"Root directory {root} is a symbolic link.")
        if not os.path.isdir(root):
            raise InvalidRootError(f"Root directory {root} does not exist or is not a directory.")
        self._update(lambda config: config.set_option("root", root))
        self.echo(f"Root directory set to {root}")

    def do_encrypt(self, args: List[str]) -> None:
        recipient = args[0] if args else ""
        self._update(lambda config: config.set_option("encrypt", recipient))
        if recipient:
            self.echo(f"Archives will be encrypted for {recipient}")
        else:
            self.echo("Encryption disabled")

    def do_exclude(self, args: List[str]) -> None:
        if not args:
            for pattern in sorted(self._load().exclude_patterns):
                self._write(self.stdout, pattern)
            return
        if args[0] in ("-r", "--remove"):
            self._remove_patterns(args[1:])
            return

        def add_all(config: Configuration) -> None:
            for pattern in args:
                config.add_pattern(pattern)

        self._update(add_all)
        self.echo(f"Excluding {', '.join(args)}")

    def _remove_patterns(self, patterns: List[str]) -> None:
        if not patterns:
            raise ConfigValueError("Name at least one pattern to remove.")

        def remove_all(config: Configuration) -> None:
            # all or nothing: the file is left alone when a pattern is unknown
            missing = [pattern for pattern in patterns if pattern not in config.exclude_patterns]
            if missing:
                raise ConfigValueError(f"Not an exclude pattern: {', '.join(missing)}")
            for pattern in patterns:
                config.remove_pattern(pattern)

        self._update(remove_all)
        self.echo(f"No longer excluding {', '.join(patterns)}")

    def do_compress(self, args: List[str]) -> None:
        method = args[0] if args else "none"
        if method == "none":
            method = ""
        elif method not in COMPRESSION_CHOICES:
            raise ConfigValueError(
                f"Unknown compression '{method}'. Use {', '.join(COMPRESSION_CHOICES)} or none."
            )
        self._update(lambda config: config.set_option("compress", method))
        self.echo(f"Compression set to {method or 'none'}")

    def do_output(self, args: List[str]) -> None:
        if not args:
            current = read_option(self.context.config_path, "output")
            self._write(self.stdout, current or f"{os.getcwd()} (current directory)")
            return
        directory = "" if args[0] == "none" else os.path.abspath(args[0])
        self._update(lambda config: config.set_option("output", directory))
        if directory:
            self.echo(f"Default output directory set to {directory}")
        else:
            self.echo("Default output directory cleared")

    def do_help(self, args: List[str]) -> None:
        print("Commands (any unambiguous prefix is accepted):", file=self.stdout)
        width = max(len(usage) for _verb, _shortest, usage, _summary in VERBS)
        for _verb, _shortest, usage, summary in VERBS:
            print(f"  {usage.ljust(width)}  {summary}", file=self.stdout)

    def do_version(self, args: List[str]) -> None:
        print(f"{APP_NAME} {__version__}", file=self.stdout)

    def do_quit(self, args: List[str]) -> None:
        # leaving the loop is handled by the interactive shell
        return None


__all__ = [
    "CommandDispatcher",
    "Context",
    "EXIT_FAILURE",
    "EXIT_FATAL",
    "EXIT_OK",
    "UnknownCommandError",
    "VERB_TABLE",
    "VERBS",
    "build_verb_table",
    "resolve_verb",
]
