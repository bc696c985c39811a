from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from ..errors import CommandError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


class CommandExecutor:
    """Runs host commands with consistent logging.

    Passed explicitly to every component that touches the host, so tests can
    substitute a recording fake instead of patching subprocess.
    """

    def __init__(self, *, dry_run: bool = False, log: Optional[logging.Logger] = None) -> None:
        self.dry_run = dry_run
        self.log = log or logger

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        input_text: str | None = None,
        readonly: bool = False,
    ) -> CmdResult:
        """Run a command.

        - Always logs the command.
        - Captures stdout/stderr; both are logged at debug level.
        - dry_run logs but does not execute, unless the command is readonly.
        - check=True raises CommandError on a non-zero exit.
        """

        argv_list = list(argv)
        self.log.info("CMD %s", fmt_argv(argv_list))

        if self.dry_run and not readonly:
            return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

        try:
            p = subprocess.run(
                argv_list,
                input=input_text,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=dict(os.environ, **(env or {})),
            )
        except FileNotFoundError as e:
            # Missing binary behaves like a failed command.
            if check:
                raise CommandError(argv_list, 127, str(e)) from e
            return CmdResult(argv=argv_list, returncode=127, stdout="", stderr=str(e))

        if p.stdout:
            self.log.debug("STDOUT %s", p.stdout.strip())
        if p.stderr:
            self.log.debug("STDERR %s", p.stderr.strip())

        if check and p.returncode != 0:
            raise CommandError(argv_list, p.returncode, p.stderr or "")

        return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)

    def which(self, command: str) -> Optional[str]:
        """Read-only lookup of a host command on PATH."""
        return shutil.which(command)
