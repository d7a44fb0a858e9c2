"""Interactive read-eval loop on top of the command dispatcher."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .commands import EXIT_OK, CommandDispatcher, UnknownCommandError, resolve_verb

LOGGER = logging.getLogger(__name__)

PROMPT = "arkki> "


@dataclass
class InteractiveShell:
    dispatcher: CommandDispatcher
    read_line: Callable[[str], str] = input
    prompt: Optional[str] = PROMPT

    def run(self) -> int:
        """Run commands until ``quit`` or end of input.

        Failed commands are reported by the dispatcher and do not end the
        session.
        """

        while True:
            try:
                line = self.read_line(self.prompt or "")
            except EOFError:
                if self.prompt:
                    print(file=self.dispatcher.stdout)
                return EXIT_OK
            except KeyboardInterrupt:
                print(file=self.dispatcher.stdout)
                continue

            words = line.split()
            if not words:
                continue
            if self._is_quit(words[0]):
                return EXIT_OK
            code = self.dispatcher.dispatch(words)
            LOGGER.debug("Command '%s' finished with %d.", words[0], code)

    # ------------------------------------------------------------------
    def _is_quit(self, word: str) -> bool:
        try:
            return resolve_verb(word) == "quit"
        except UnknownCommandError:
            return False


__all__ = ["InteractiveShell", "PROMPT"]
