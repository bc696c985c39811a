from __future__ import annotations

import logging

from ..lib.osconfig import resolve
from ..pipeline import InstallContext

logger = logging.getLogger(__name__)


class ResolveEnvironmentStep:
    step_id = "20_resolve_environment"

    def run(self, ctx: InstallContext) -> None:
        target = ctx.template.target
        ctx.builder = resolve(
            ctx.config_root,
            ctx.repo_path,
            target.os,
            target.dist,
            target.arch,
            executor=ctx.executor,
            build_dir=ctx.build_dir,
        )
        logger.info(
            "Using %s installer with package cache %s",
            ctx.builder.installer.pkg_type,
            ctx.builder.pkg_cache_dir,
        )
