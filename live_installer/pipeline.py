from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .errors import InstallationCancelled, InstallerError, StageError
from .lib.command import CommandExecutor
from .lib.env import PATHS
from .lib.osconfig import ChrootBuilder
from .lib.progress import ProgressReporter
from .template import ImageTemplate

logger = logging.getLogger(__name__)

# Called before each stage with its step_id; False means the user quit.
Checkpoint = Callable[[str], bool]


@dataclass
class InstallContext:
    """Everything one installation attempt reads and produces."""

    template: ImageTemplate
    config_root: str
    repo_path: str
    executor: CommandExecutor
    reporter: ProgressReporter
    build_dir: str = PATHS.chroot_build_dir
    mount_dir: str = PATHS.target_mount
    builder: Optional[ChrootBuilder] = None
    chroot_root: Optional[str] = None
    path_map: Dict[str, str] = field(default_factory=dict)


class Step(Protocol):
    """A single pipeline stage."""

    step_id: str

    def run(self, ctx: InstallContext) -> None:
        ...


@dataclass(frozen=True)
class PipelineResult:
    ctx: InstallContext
    ran_steps: List[str]


def run_pipeline(
    *,
    ctx: InstallContext,
    steps: Sequence[Step],
    checkpoint: Optional[Checkpoint] = None,
) -> PipelineResult:
    """Run steps in order; the first failure stops the pipeline.

    Nothing is retried and completed steps are not rolled back.
    """

    ran: List[str] = []

    for step in steps:
        if checkpoint is not None and not checkpoint(step.step_id):
            logger.warning("Installation cancelled before %s", step.step_id)
            raise InstallationCancelled(f"installation cancelled before {step.step_id}")

        logger.info("Running step %s", step.step_id)
        try:
            step.run(ctx)
        except InstallerError as e:
            logger.error("Step %s failed: %s", step.step_id, e)
            raise StageError(step.step_id, e) from e
        ran.append(step.step_id)

    return PipelineResult(ctx=ctx, ran_steps=ran)
