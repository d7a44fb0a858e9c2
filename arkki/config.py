"""Configuration model and the flat text format it is stored in.

A configuration file has two sections::

    [options]
    compress=bzip2
    root=/home/user

    [exclude]
    pattern=*.tmp

Parsing happens in two passes: :func:`tokenize` turns the text into
``(section, key, value)`` triples and :func:`parse_config` folds them into a
:class:`Configuration`. Every mutation is persisted by rewriting the whole
file through a temporary file and an atomic rename.
"""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional, Set, Tuple

from . import __version__
from .utils import ensure_directory

LOGGER = logging.getLogger(__name__)

APP_NAME = "arkki"
DEFAULT_PROFILE = "default"
OPTIONS_SECTION = "options"
EXCLUDE_SECTION = "exclude"
PATTERN_KEY = "pattern"
COMPRESSION_CHOICES = ("bzip2", "gzip")

# surrogateescape keeps undecodable path bytes intact across a rewrite
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class ConfigError(Exception):
    """Raised when configuration loading, validation or saving fails."""


class ConfigNotFoundError(ConfigError):
    """No configuration file exists at the resolved path."""


class ConfigExistsError(ConfigError):
    """A configuration file already exists where a new one was requested."""


class ConfigWriteError(ConfigError):
    """The configuration could not be rewritten; the old file is untouched."""


class ConfigValueError(ConfigError):
    """An option name, value or pattern cannot be represented in the file."""


@dataclass
class Configuration:
    options: Dict[str, str] = field(default_factory=dict)
    exclude_patterns: Set[str] = field(default_factory=set)

    @classmethod
    def defaults(cls, home: Path) -> "Configuration":
        home_dir = str(home)
        return cls(
            options={
                "version": __version__,
                "root": home_dir,
                "output": "",
                "encrypt": "",
                "compress": "bzip2",
            },
            exclude_patterns={os.path.join(home_dir, ".cache"), "*.tmp"},
        )

    # ------------------------------------------------------------------
    def get_option(self, name: str, default: str = "") -> str:
        value = self.options.get(name)
        if not value:
            return default
        return value

    def set_option(self, name: str, value: str) -> "Configuration":
        """Set option *name* to *value*, or remove it when *value* is empty."""

        _check_key(name)
        if not value:
            self.options.pop(name, None)
            return self
        if "\n" in value or "\r" in value:
            raise ConfigValueError(f"Value for '{name}' must fit on one line.")
        if "\0" in value:
            raise ConfigValueError(f"Value for '{name}' must not contain NUL characters.")
        self.options[name] = value
        return self

    def add_pattern(self, pattern: str) -> "Configuration":
        if not pattern:
            raise ConfigValueError("Exclude pattern must not be empty.")
        if "\n" in pattern or "\r" in pattern:
            raise ConfigValueError("Exclude pattern must fit on one line.")
        if "\0" in pattern:
            raise ConfigValueError("Exclude pattern must not contain NUL characters.")
        self.exclude_patterns.add(pattern)
        return self

    def remove_pattern(self, pattern: str) -> bool:
        if pattern in self.exclude_patterns:
            self.exclude_patterns.discard(pattern)
            return True
        return False

    # ------------------------------------------------------------------
    @property
    def root(self) -> str:
        return self.get_option("root")

    @property
    def output(self) -> str:
        return self.get_option("output")

    @property
    def encrypt(self) -> str:
        return self.get_option("encrypt")

    @property
    def compress(self) -> str:
        value = self.get_option("compress")
        return value if value in COMPRESSION_CHOICES else ""


def _check_key(name: str) -> None:
    if not name or name != name.strip():
        raise ConfigValueError(f"Invalid option name '{name}'.")
    if "=" in name or "\n" in name or "\r" in name or "\0" in name:
        raise ConfigValueError(f"Option name '{name}' must not contain '=', NUL or line breaks.")


# ---------------------------------------------------------------------------
def tokenize(text: str) -> Iterator[Tuple[str, str, str]]:
    """Yield ``(section, key, value)`` for every entry of a recognized section."""

    section: Optional[str] = None
    for line in text.split("\n"):
        line = line.rstrip("\r")
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("[") and stripped.endswith("]"):
            name = stripped[1:-1].strip()
            section = name if name in (OPTIONS_SECTION, EXCLUDE_SECTION) else None
            continue
        if section is None:
            continue
        key, _, value = line.partition("=")
        yield section, key.strip(), value


def parse_config(text: str) -> Configuration:
    config = Configuration()
    for section, key, value in tokenize(text):
        if section == OPTIONS_SECTION:
            if key:
                config.options[key] = value
        elif key == PATTERN_KEY and value:
            config.exclude_patterns.add(value)
    return config


def serialize_config(config: Configuration) -> str:
    lines = [f"[{OPTIONS_SECTION}]"]
    lines.extend(f"{key}={config.options[key]}" for key in sorted(config.options))
    lines.append("")
    lines.append(f"[{EXCLUDE_SECTION}]")
    lines.extend(f"{PATTERN_KEY}={pattern}" for pattern in sorted(config.exclude_patterns))
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
def default_config_dir(home: Path) -> Path:
    return Path(home) / ".config" / APP_NAME


def resolve_config_path(name: Optional[str], config_dir: Path) -> Path:
    """Map a profile name or explicit path to an absolute file path.

    Names without a path separator live in *config_dir*; anything else is
    taken as a path relative to the working directory. No filesystem access
    happens here.
    """

    name = name or DEFAULT_PROFILE
    if "\0" in name:
        raise ConfigValueError("Configuration name must not contain NUL characters.")
    if os.sep in name or (os.altsep and os.altsep in name):
        return Path(os.path.abspath(name))
    return Path(os.path.abspath(os.path.join(str(config_dir), name)))


def load_config(path: Path) -> Configuration:
    path = Path(path)
    try:
        text = path.read_text(encoding=_ENCODING, errors=_ERRORS)
    except FileNotFoundError as exc:
        raise ConfigNotFoundError(f"No configuration at {path}.") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
    return parse_config(text)


def read_option(path: Path, name: str, default: str = "") -> str:
    """Return an option from the file at *path* without creating it."""

    try:
        return load_config(path).get_option(name, default)
    except ConfigNotFoundError:
        return default


def create_default_config(path: Path, home: Path) -> Configuration:
    path = Path(path)
    if path.exists():
        raise ConfigExistsError(f"Configuration {path} already exists.")
    config = Configuration.defaults(home)
    persist_config(config, path)
    LOGGER.info("Created default configuration %s.", path)
    return config


def load_or_create_config(path: Path, home: Path) -> Configuration:
    try:
        return load_config(path)
    except ConfigNotFoundError:
        return create_default_config(path, home)


def persist_config(config: Configuration, path: Path) -> None:
    """Replace the file at *path* with the serialized *config*.

    The new content is written to a temporary file next to *path* and renamed
    over it, so readers see either the old or the new file.
    """

    path = Path(path)
    text = serialize_config(config)
    try:
        ensure_directory(path.parent)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    except OSError as exc:
        raise ConfigWriteError(f"Cannot write configuration {path}: {exc}") from exc

    try:
        with os.fdopen(fd, "w", encoding=_ENCODING, errors=_ERRORS) as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, str(path))
    except BaseException as exc:
        _remove_temporary(tmp_name)
        if isinstance(exc, OSError):
            raise ConfigWriteError(f"Cannot write configuration {path}: {exc}") from exc
        raise
    LOGGER.debug("Saved configuration %s.", path)


def _remove_temporary(name: str) -> None:
    try:
        os.unlink(name)
    except FileNotFoundError:
        pass
    except OSError as exc:  # pragma: no cover - filesystem dependent
        LOGGER.warning("Could not remove temporary file '%s': %s", name, exc)


__all__ = [
    "APP_NAME",
    "DEFAULT_PROFILE",
    "COMPRESSION_CHOICES",
    "Configuration",
    "ConfigError",
    "ConfigExistsError",
    "ConfigNotFoundError",
    "ConfigValueError",
    "ConfigWriteError",
    "create_default_config",
    "default_config_dir",
    "load_config",
    "load_or_create_config",
    "parse_config",
    "persist_config",
    "read_option",
    "resolve_config_path",
    "serialize_config",
    "tokenize",
]
