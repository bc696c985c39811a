from __future__ import annotations

import logging

from ..errors import ExecutionError
from ..lib.storage import DiskFinalizer
from ..lib.sysconfig import SystemConfigurator
from ..pipeline import InstallContext

logger = logging.getLogger(__name__)


class FinalizeDiskStep:
    step_id = "40_finalize_disk"

    def __init__(self, finalizer: DiskFinalizer, configurator: SystemConfigurator) -> None:
        self.finalizer = finalizer
        self.configurator = configurator

    def run(self, ctx: InstallContext) -> None:
        if not ctx.chroot_root:
            raise ExecutionError("installation root missing; run 30_install_packages first")

        ctx.path_map = self.finalizer.apply_partitions(ctx.template)
        self.finalizer.install_root(
            ctx.template,
            ctx.path_map,
            ctx.chroot_root,
            ctx.mount_dir,
            configure=lambda root: self.configurator.configure(ctx.template, root),
        )
        logger.info("Disk %s finalized", ctx.template.disk.path)
