"""Command line interface for the arkki backup tool."""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, Optional

from arkki import __version__
from arkki.commands import EXIT_FATAL, CommandDispatcher, Context
from arkki.shell import PROMPT, InteractiveShell


class ArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports startup errors with the fatal exit code."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_FATAL, f"{self.prog}: error: {message}\n")


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="arkki",
        description="Back up a directory tree with tar, optionally compressed and encrypted with gpg.",
        epilog="Run 'arkki help' for the list of commands.",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Configuration name (stored under ~/.config/arkki) or path to a configuration file.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Be more verbose; repeat for debug output.")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only report errors.")
    parser.add_argument("-i", "--interactive", action="store_true", help="Read commands from standard input.")
    parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Print the backup command line instead of running it."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and its arguments (default: backup).")
    return parser


def configure_logging(level: int, quiet: bool = False) -> None:
    if quiet:
        log_level = logging.ERROR
    elif level >= 2:
        log_level = logging.DEBUG
    elif level == 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING
    logging.basicConfig(level=log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.interactive and args.command:
        parser.error("a command cannot be combined with --interactive")
    if args.verbose and args.quiet:
        parser.error("--verbose and --quiet are mutually exclusive")

    configure_logging(args.verbose, args.quiet)
    context = Context.from_environment(
        config_name=args.config,
        verbose=args.verbose > 0,
        quiet=args.quiet,
        dry_run=args.dry_run,
    )
    dispatcher = CommandDispatcher(context)

    if args.interactive:
        prompt = PROMPT if sys.stdin.isatty() else None
        code = InteractiveShell(dispatcher, prompt=prompt).run()
    else:
        code = dispatcher.run_batch(args.command)
    sys.exit(code)


if __name__ == "__main__":
    main()
