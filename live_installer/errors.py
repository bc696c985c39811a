"""Exception hierarchy for the live installer.

Every stage of the install pipeline raises one of these; the orchestrator
turns them into an error outcome for the caller.
"""

from __future__ import annotations

from typing import Sequence


class InstallerError(Exception):
    """Base class for all installer failures."""


class ConfigError(InstallerError):
    """Missing or invalid build profile / chroot-env config."""


class TemplateError(ConfigError):
    """The image template could not be loaded or failed validation."""


class ProfileValidationError(ConfigError):
    """The build profile document does not match the expected schema."""


class PreconditionError(InstallerError):
    """Raised before any destructive action; the disk is left untouched."""


class PartitionPlanError(PreconditionError):
    pass


class DependencyError(InstallerError):
    """Required host tooling is missing or the target OS is unknown."""


class ExecutionError(InstallerError):
    """A stage failed while mutating the target."""


class CommandError(ExecutionError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        cmd = " ".join(self.argv)
        msg = f"Command failed ({returncode}): {cmd}"
        if stderr.strip():
            msg += f"\n{stderr.strip()}"
        super().__init__(msg)


class PackageInstallError(ExecutionError):
    pass


class BootEntryError(ExecutionError):
    pass


class InstallationCancelled(InstallerError):
    """The user quit the attended installer at a checkpoint."""


class StageError(InstallerError):
    """A pipeline stage failed; carries the stage id and the underlying error."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")
