from __future__ import annotations

import logging

from ..errors import ExecutionError, InstallerError, PackageInstallError
from ..lib.progress import Progress, run_with_progress
from ..pipeline import InstallContext

logger = logging.getLogger(__name__)


class InstallPackagesStep:
    """Build the chroot on a worker thread, streaming progress to the reporter.

    Runs to completion once started; there is no mid-install cancellation.
    """

    step_id = "30_install_packages"

    def run(self, ctx: InstallContext) -> None:
        builder = ctx.builder
        if builder is None:
            raise ExecutionError("chroot builder missing; run 20_resolve_environment first")

        def work(progress: Progress) -> str:
            return builder.build(ctx.template, progress.report)

        result = run_with_progress(work, ctx.reporter)
        if not result.ok:
            err = result.error
            if isinstance(err, InstallerError):
                raise err
            raise PackageInstallError(f"package installation failed: {err}") from err

        ctx.chroot_root = result.value
        logger.info("Installation root ready at %s", ctx.chroot_root)
