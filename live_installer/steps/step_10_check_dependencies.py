from __future__ import annotations

import logging

from ..lib.deps import DependencyChecker
from ..pipeline import InstallContext

logger = logging.getLogger(__name__)


class CheckDependenciesStep:
    step_id = "10_check_dependencies"

    def __init__(self, checker: DependencyChecker) -> None:
        self.checker = checker

    def run(self, ctx: InstallContext) -> None:
        self.checker.check(ctx.template.target.os)
