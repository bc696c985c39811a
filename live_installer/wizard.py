"""Plain console wizard for attended installs.

A richer front-end only needs to implement ``Wizard.run``: collect choices
into the template, call ``install`` with a reporter, and say whether the user
quit.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Optional, TextIO

from .installer import InstallFn
from .template import ImageTemplate

logger = logging.getLogger(__name__)

CONFIRM_WORD = "yes"


class ConsoleReporter:
    def __init__(self, out: TextIO) -> None:
        self.out = out

    def on_progress(self, percent: int) -> None:
        self.out.write(f"\r[{'#' * (percent // 5):<20}] {percent:3d}%")
        self.out.flush()

    def on_status(self, line: str) -> None:
        self.out.write(f"\n  {line}\n")
        self.out.flush()


class ConsoleWizard:
    def __init__(
        self,
        *,
        prompt: Callable[[str], str] = input,
        out: Optional[TextIO] = None,
    ) -> None:
        self.prompt = prompt
        self.out = out or sys.stdout
        self.quit_requested = False

    def _ask(self, question: str, default: str = "") -> str:
        suffix = f" [{default}]" if default else ""
        answer = self.prompt(f"{question}{suffix}: ").strip()
        return answer or default

    def _collect(self, template: ImageTemplate) -> bool:
        """Fill in the template; False if the user backed out."""

        t = template.target
        self.out.write(f"Installing {t.os} {t.dist} ({t.arch})\n")

        template.disk.path = self._ask("Target disk", template.disk.path)
        if not template.disk.path:
            self.out.write("No target disk given.\n")
            return False

        hostname = self._ask("Hostname", template.system_config.hostname)
        if hostname:
            template.system_config.hostname = hostname

        answer = self._ask(f"All data on {template.disk.path} will be erased. Type '{CONFIRM_WORD}' to continue")
        return answer.lower() == CONFIRM_WORD

    def _checkpoint(self, step_id: str) -> bool:
        logger.debug("Checkpoint before %s (quit=%s)", step_id, self.quit_requested)
        return not self.quit_requested

    def run(self, template: ImageTemplate, install: InstallFn) -> bool:
        try:
            if not self._collect(template):
                self.quit_requested = True
                return True
        except (KeyboardInterrupt, EOFError):
            self.out.write("\n")
            self.quit_requested = True
            return True

        start = time.monotonic()
        install(template, ConsoleReporter(self.out), self._checkpoint)
        minutes, seconds = divmod(int(time.monotonic() - start), 60)
        self.out.write(f"\nInstallation complete in {minutes} minutes and {seconds} seconds. Remove the media and reboot.\n")
        return False
