"""Installation orchestrator.

``install`` runs the five pipeline stages against one template. The two
entry points wrap it:

- ``unattended_install``: template file in, outcome out, no human involved.
- ``attended_install``: the wizard collects choices, then calls back into
  ``install`` with its own progress reporter and cancellation checkpoint.

Both always return an InstallOutcome; no exception escapes them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from .errors import InstallationCancelled, InstallerError
from .lib.bootloader import BootManager
from .lib.command import CommandExecutor
from .lib.deps import DependencyChecker
from .lib.env import BOOT_ENTRY_LABEL, PATHS
from .lib.progress import LoggingReporter, ProgressReporter
from .lib.storage import DiskFinalizer
from .lib.sysconfig import SystemConfigurator
from .pipeline import Checkpoint, InstallContext, Step, run_pipeline
from .steps import (
    BootEntriesStep,
    CheckDependenciesStep,
    FinalizeDiskStep,
    InstallPackagesStep,
    ResolveEnvironmentStep,
)
from .template import ImageTemplate, load_template

logger = logging.getLogger(__name__)

InstallFn = Callable[[ImageTemplate, ProgressReporter, Optional[Checkpoint]], ImageTemplate]


@dataclass(frozen=True)
class InstallOutcome:
    """Terminal result of one run: exactly one of template/cancelled/error."""

    template: Optional[ImageTemplate] = None
    cancelled: bool = False
    error: Optional[BaseException] = None
    duration: float = 0.0

    @property
    def completed(self) -> bool:
        return self.template is not None

    def describe_duration(self) -> str:
        total = int(round(self.duration))
        minutes, seconds = divmod(total, 60)
        if seconds == 0:
            return f"{minutes} minutes"
        return f"{minutes} minutes and {seconds} seconds"


class Wizard(Protocol):
    """Interactive front-end for attended installs."""

    def run(self, template: ImageTemplate, install: InstallFn) -> bool:
        """Drive the user through the install; return True if the user quit.

        Errors raised by ``install`` propagate out of this call.
        """
        ...


class Installer:
    def __init__(
        self,
        executor: Optional[CommandExecutor] = None,
        *,
        config_root: str = PATHS.config_root,
        build_dir: str = PATHS.chroot_build_dir,
        mount_dir: str = PATHS.target_mount,
        boot_label: str = BOOT_ENTRY_LABEL,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.executor = executor or CommandExecutor()
        self.config_root = config_root
        self.build_dir = build_dir
        self.mount_dir = mount_dir
        self.log = log or logger
        self.checker = DependencyChecker(self.executor, log=self.log)
        self.finalizer = DiskFinalizer(self.executor, log=self.log)
        self.configurator = SystemConfigurator(self.executor, log=self.log)
        self.boot_manager = BootManager(self.executor, label=boot_label, log=self.log)

    def build_steps(self) -> List[Step]:
        return [
            CheckDependenciesStep(self.checker),
            ResolveEnvironmentStep(),
            InstallPackagesStep(),
            FinalizeDiskStep(self.finalizer, self.configurator),
            BootEntriesStep(self.boot_manager),
        ]

    def install(
        self,
        template: ImageTemplate,
        config_root: str,
        repo_path: str,
        *,
        reporter: Optional[ProgressReporter] = None,
        checkpoint: Optional[Checkpoint] = None,
    ) -> ImageTemplate:
        """Run the full pipeline; raises InstallerError on the first failing stage."""

        ctx = InstallContext(
            template=template,
            config_root=config_root,
            repo_path=repo_path,
            executor=self.executor,
            reporter=reporter or LoggingReporter(self.log),
            build_dir=self.build_dir,
            mount_dir=self.mount_dir,
        )
        result = run_pipeline(ctx=ctx, steps=self.build_steps(), checkpoint=checkpoint)
        self.log.info("Installation finished (steps: %s)", ", ".join(result.ran_steps))
        return template

    def _guarded(self, run: Callable[[], Optional[ImageTemplate]]) -> InstallOutcome:
        """Convert whatever happens inside run() into an outcome."""

        start = time.monotonic()
        try:
            template = run()
        except InstallationCancelled:
            return InstallOutcome(cancelled=True, duration=time.monotonic() - start)
        except InstallerError as e:
            self.log.error("Installation failed: %s", e)
            return InstallOutcome(error=e, duration=time.monotonic() - start)
        except Exception as e:
            self.log.exception("Unexpected failure during installation")
            err = InstallerError(f"unexpected failure: {e}")
            err.__cause__ = e
            return InstallOutcome(error=err, duration=time.monotonic() - start)

        duration = time.monotonic() - start
        if template is None:
            return InstallOutcome(cancelled=True, duration=duration)
        return InstallOutcome(template=template, duration=duration)

    def unattended_install(
        self,
        template_path: str,
        repo_path: str,
        *,
        reporter: Optional[ProgressReporter] = None,
    ) -> InstallOutcome:
        def run() -> ImageTemplate:
            template = load_template(template_path)
            return self.install(template, self.config_root, repo_path, reporter=reporter)

        outcome = self._guarded(run)
        if outcome.completed:
            self.log.info("Unattended install completed in %s", outcome.describe_duration())
        return outcome

    def attended_install(self, template_path: str, repo_path: str, wizard: Wizard) -> InstallOutcome:
        def install(
            template: ImageTemplate,
            reporter: ProgressReporter,
            checkpoint: Optional[Checkpoint] = None,
        ) -> ImageTemplate:
            return self.install(
                template,
                self.config_root,
                repo_path,
                reporter=reporter,
                checkpoint=checkpoint,
            )

        def run() -> Optional[ImageTemplate]:
            template = load_template(template_path)
            quit_requested = wizard.run(template, install)
            if quit_requested:
                self.log.warning("Installation was quit by the user")
                return None
            return template

        outcome = self._guarded(run)
        if outcome.completed:
            self.eject_media()
        return outcome

    def eject_media(self) -> None:
        """Best effort; a failure here never changes the outcome."""

        r = self.executor.run(["eject", "--cdrom", "--force"], check=False)
        if not r.ok:
            self.log.warning("Failed to eject installation media: %s", r.stderr.strip())


def unattended_install(template_path: str, repo_path: str, *, config_root: str = PATHS.config_root) -> InstallOutcome:
    return Installer(config_root=config_root).unattended_install(template_path, repo_path)


def attended_install(
    template_path: str,
    repo_path: str,
    wizard: Wizard,
    *,
    config_root: str = PATHS.config_root,
) -> InstallOutcome:
    return Installer(config_root=config_root).attended_install(template_path, repo_path, wizard)
