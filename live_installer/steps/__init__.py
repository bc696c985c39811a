from .step_10_check_dependencies import CheckDependenciesStep
from .step_20_resolve_environment import ResolveEnvironmentStep
from .step_30_install_packages import InstallPackagesStep
from .step_40_finalize_disk import FinalizeDiskStep
from .step_50_boot_entries import BootEntriesStep

__all__ = [
    "CheckDependenciesStep",
    "ResolveEnvironmentStep",
    "InstallPackagesStep",
    "FinalizeDiskStep",
    "BootEntriesStep",
]
