from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .installer import Installer, InstallOutcome, Wizard
from .lib.command import CommandExecutor
from .lib.env import PATHS
from .logging_utils import DEFAULT_LOG_PATH, configure_logging, parse_level
from .wizard import ConsoleWizard

logger = logging.getLogger(__name__)


def run(
    *,
    template_path: str,
    repo_path: str,
    attended: bool = False,
    config_root: str = PATHS.config_root,
    log_path: str = DEFAULT_LOG_PATH,
    log_level: Optional[str] = None,
    dry_run: bool = False,
    wizard: Optional[Wizard] = None,
) -> InstallOutcome:
    """Configure logging and run one attended or unattended installation."""

    default_level = logging.INFO if attended else logging.DEBUG
    level = parse_level(log_level) if log_level else default_level
    # The console belongs to the wizard during attended runs.
    configure_logging(log_path=log_path, level=level, also_console=not attended)

    installer = Installer(CommandExecutor(dry_run=dry_run), config_root=config_root)
    if attended:
        return installer.attended_install(template_path, repo_path, wizard or ConsoleWizard())
    return installer.unattended_install(template_path, repo_path)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="live-installer",
        description="Install an OS image onto the target disk from an image template.",
    )
    p.add_argument("-c", "--config", required=True, help="Image template YAML file")
    p.add_argument("-r", "--repo", required=True, help="Local package cache directory")
    p.add_argument("-a", "--attended", action="store_true", help="Prompt for user input during installation")
    p.add_argument("--config-dir", default=PATHS.config_root, help="Root of the osv/<os>/<dist> build profiles")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--log-level", default=None, help="Log level (debug, info, warn, error)")
    p.add_argument("--dry-run", action="store_true", help="Log commands without executing them")

    args = p.parse_args(argv)

    try:
        outcome = run(
            template_path=args.config,
            repo_path=args.repo,
            attended=args.attended,
            config_root=args.config_dir,
            log_path=args.log,
            log_level=args.log_level,
            dry_run=args.dry_run,
        )
    except ValueError as e:
        p.error(str(e))

    if outcome.cancelled:
        print("Installation was quit by the user", file=sys.stderr)
        return 1
    if outcome.error is not None:
        mode = "Attended" if args.attended else "Unattended"
        print(f"{mode} install failed: {outcome.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
