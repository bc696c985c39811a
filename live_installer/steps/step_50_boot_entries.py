from __future__ import annotations

import logging

from ..lib.bootloader import BootManager
from ..pipeline import InstallContext

logger = logging.getLogger(__name__)


class BootEntriesStep:
    step_id = "50_boot_entries"

    def __init__(self, boot_manager: BootManager) -> None:
        self.boot_manager = boot_manager

    def run(self, ctx: InstallContext) -> None:
        template = ctx.template
        if not template.is_efi:
            logger.info("Boot type %s: firmware boot entries not managed", template.boot_type)
            return

        self.boot_manager.remove_old_boot_entries()
        self.boot_manager.create_new_boot_entry(template, ctx.path_map)
        self.boot_manager.update_boot_order(template, ctx.path_map)
