"""Archive pipeline construction and execution."""
from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import BinaryIO, List, Optional, Tuple, Union

from .config import Configuration
from .utils import datestamp, render_command, shell_escape, short_hostname

LOGGER = logging.getLogger(__name__)

ARCHIVER = "tar"
ENCRYPTOR = "gpg"
COMPRESSION_FLAGS = {"bzip2": "-j", "gzip": "-z"}
COMPRESSION_SUFFIXES = {"bzip2": ".bz2", "gzip": ".gz"}
ENCRYPTION_SUFFIX = ".gpg"
PARTIAL_SUFFIX = ".part"


class BackupError(Exception):
    """Raised when a backup or listing cannot be carried out."""


class MissingRootError(BackupError):
    """The configuration names no root directory."""


class SymlinkRootError(BackupError):
    """The root directory is a symbolic link."""


class InvalidRootError(BackupError):
    """The root directory does not exist or is not a directory."""


class CommandFailedError(BackupError):
    """A pipeline stage could not be started or exited with a non-zero status."""

    def __init__(self, stage: str, returncode: Optional[int], message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.returncode = returncode


@dataclass(frozen=True)
class Stage:
    """One process of a pipeline: a program and its raw arguments."""

    name: str
    program: str
    args: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]

    @property
    def escaped_args(self) -> List[str]:
        return [shell_escape(arg) for arg in self.args]

    def render(self) -> str:
        return render_command(self.argv)


@dataclass(frozen=True)
class PipelineSpec:
    """Stages connected stdout-to-stdin, the last one writing to ``output``.

    ``output`` is ``None`` when the last stage writes to the terminal.
    """

    stages: Tuple[Stage, ...]
    output: Optional[str] = None

    @property
    def archive(self) -> Stage:
        return self.stages[0]

    @property
    def encryption(self) -> Optional[Stage]:
        return self.stage("encrypt")

    def stage(self, name: str) -> Optional[Stage]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    def render(self) -> str:
        """Return the equivalent shell command line with every word escaped."""

        command = " | ".join(stage.render() for stage in self.stages)
        if self.output is not None:
            command += " > " + shell_escape(self.output)
        return command


# ---------------------------------------------------------------------------
def _checked_root(config: Configuration) -> str:
    root = config.root
    if not root:
        raise MissingRootError("No root directory configured. Use 'setroot' first.")
    path = Path(root)
    if path.is_symlink():
        raise SymlinkRootError(f"Root directory {root} is a symbolic link.")
    if not path.is_dir():
        raise InvalidRootError(f"Root directory {root} does not exist or is not a directory.")
    return root


def _compression_arguments(config: Configuration) -> List[str]:
    flag = COMPRESSION_FLAGS.get(config.compress)
    return [flag] if flag else []


def _exclude_arguments(config: Configuration) -> List[str]:
    patterns = {pattern.rstrip("/") or pattern for pattern in config.exclude_patterns}
    return [f"--exclude={pattern}" for pattern in sorted(patterns)]


def build_pipeline(config: Configuration, output_path: Union[str, Path], verbose: bool = False) -> PipelineSpec:
    """Build the ``archive [| encrypt] > output_path`` pipeline for *config*."""

    root = _checked_root(config)
    args = _compression_arguments(config)
    if verbose:
        args.append("-v")
    args.extend(_exclude_arguments(config))
    args.extend(["-c", "-f", "-", "--", root])

    stages = [Stage("archive", ARCHIVER, tuple(args))]
    recipient = config.encrypt
    if recipient:
        stages.append(Stage("encrypt", ENCRYPTOR, ("--encrypt", "--recipient", recipient)))
    return PipelineSpec(stages=tuple(stages), output=os.fspath(output_path))


def build_list_pipeline(config: Configuration) -> PipelineSpec:
    """Build an archive run that only prints the selected files."""

    root = _checked_root(config)
    args = _compression_arguments(config)
    args.extend(_exclude_arguments(config))
    args.extend(["-c", "-v", "-f", os.devnull, "--", root])
    return PipelineSpec(stages=(Stage("archive", ARCHIVER, tuple(args)),))


def backup_filename(
    config: Configuration,
    profile: Optional[str] = None,
    today: Optional[date] = None,
    hostname: Optional[str] = None,
) -> str:
    base = profile or hostname or short_hostname()
    name = f"{base}-{datestamp(today)}.tar"
    name += COMPRESSION_SUFFIXES.get(config.compress, "")
    if config.encrypt:
        name += ENCRYPTION_SUFFIX
    return name


def resolve_output_path(
    target: Optional[str],
    config: Configuration,
    profile: Optional[str] = None,
    today: Optional[date] = None,
    hostname: Optional[str] = None,
) -> Path:
    """Return the archive path for *target*, falling back to ``output`` and cwd.

    A directory gets a derived file name appended; anything else is taken as
    the file to write.
    """

    target = target or config.output or os.getcwd()
    if "\0" in target:
        raise BackupError("Backup target must not contain NUL characters.")
    path = Path(os.path.abspath(target))
    if path.is_dir():
        return path / backup_filename(config, profile, today, hostname)
    return path


# ---------------------------------------------------------------------------
@dataclass
class BackupRunner:
    logger: logging.Logger = LOGGER

    def run(self, spec: PipelineSpec) -> None:
        self.logger.info("Running pipeline: %s", spec.render())
        if spec.output is None:
            self._execute(spec.stages, None)
            return

        # an existing archive at ``output`` is only replaced once the new one is complete
        output = Path(spec.output)
        partial = output.with_name(output.name + PARTIAL_SUFFIX)
        try:
            handle = partial.open("wb")
        except OSError as exc:
            raise BackupError(f"Cannot open output file {partial}: {exc}") from exc
        try:
            with handle:
                self._execute(spec.stages, handle)
            os.replace(str(partial), str(output))
        except BaseException:
            self._discard(partial)
            raise
        self.logger.info("Archive written to '%s'.", output)

    # ------------------------------------------------------------------
    def _execute(self, stages: Tuple[Stage, ...], stdout: Optional[BinaryIO]) -> None:
        processes: List[Tuple[Stage, subprocess.Popen]] = []
        upstream = None
        try:
            for index, stage in enumerate(stages):
                last = index == len(stages) - 1
                self.logger.debug("Starting stage '%s': %s", stage.name, stage.render())
                try:
                    process = subprocess.Popen(
                        stage.argv,
                        stdin=upstream,
                        stdout=stdout if last else subprocess.PIPE,
                    )
                except OSError as exc:
                    raise CommandFailedError(
                        stage.name, None, f"Cannot start '{stage.program}': {exc}"
                    ) from exc
                finally:
                    # the child holds its own copy of the pipe
                    if upstream is not None:
                        upstream.close()
                upstream = process.stdout
                processes.append((stage, process))
        finally:
            for _stage, process in processes:
                process.wait()

        failures = [(stage, process.returncode) for stage, process in processes if process.returncode != 0]
        if failures:
            # downstream failures make upstream stages die of SIGPIPE; report the last one
            stage, returncode = failures[-1]
            raise CommandFailedError(
                stage.name,
                returncode,
                f"'{stage.program}' ({stage.name}) exited with status {returncode}.",
            )

    # ------------------------------------------------------------------
    def _discard(self, output: Path) -> None:
        try:
            output.unlink()
            self.logger.info("Removed incomplete archive '%s'.", output)
        except FileNotFoundError:
            pass
        except OSError as exc:  # pragma: no cover - filesystem dependent
            self.logger.warning("Could not remove incomplete archive '%s': %s", output, exc)


__all__ = [
    "BackupError",
    "BackupRunner",
    "CommandFailedError",
    "InvalidRootError",
    "MissingRootError",
    "PipelineSpec",
    "Stage",
    "SymlinkRootError",
    "backup_filename",
    "build_list_pipeline",
    "build_pipeline",
    "resolve_output_path",
]
