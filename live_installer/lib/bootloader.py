from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import BootEntryError, CommandError
from ..template import ImageTemplate
from .block import part_number
from .command import CommandExecutor
from .env import BOOT_ENTRY_LABEL

logger = logging.getLogger(__name__)

EFI_LOADERS = {
    "x86_64": r"\EFI\BOOT\BOOTX64.EFI",
    "amd64": r"\EFI\BOOT\BOOTX64.EFI",
    "aarch64": r"\EFI\BOOT\BOOTAA64.EFI",
    "arm64": r"\EFI\BOOT\BOOTAA64.EFI",
}

_ENTRY_RE = re.compile(r"^Boot([0-9A-Fa-f]{4})(\*?)\s+(.*)$")
_ORDER_RE = re.compile(r"^BootOrder:\s*(.*)$")


@dataclass(frozen=True)
class BootEntry:
    num: str
    label: str
    active: bool


@dataclass
class BootEntries:
    entries: List[BootEntry] = field(default_factory=list)
    order: List[str] = field(default_factory=list)

    def with_label(self, label: str) -> List[BootEntry]:
        return [e for e in self.entries if e.label == label]


def parse_efibootmgr(output: str) -> BootEntries:
    """Parse the (non-verbose) output of ``efibootmgr``."""

    parsed = BootEntries()
    for line in output.splitlines():
        line = line.rstrip()
        m = _ORDER_RE.match(line)
        if m:
            parsed.order = [n.strip().upper() for n in m.group(1).split(",") if n.strip()]
            continue
        m = _ENTRY_RE.match(line)
        if m:
            # Newer efibootmgr appends the device path after a tab.
            label = m.group(3).split("\t")[0].strip()
            parsed.entries.append(BootEntry(num=m.group(1).upper(), label=label, active=bool(m.group(2))))
    return parsed


class BootManager:
    """Lifecycle of the firmware boot entry owned by this installer.

    Entries are recognised by their label. Call order is
    remove_old_boot_entries -> create_new_boot_entry -> update_boot_order.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        label: str = BOOT_ENTRY_LABEL,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.executor = executor
        self.label = label
        self.log = log or logger

    def list_boot_entries(self) -> BootEntries:
        try:
            r = self.executor.run(["efibootmgr"], readonly=True)
        except CommandError as e:
            raise BootEntryError(f"failed to list boot entries: {e}") from e
        return parse_efibootmgr(r.stdout)

    def remove_old_boot_entries(self) -> None:
        # Enumerate fully before deleting anything.
        old = self.list_boot_entries().with_label(self.label)
        if not old:
            self.log.info("No existing '%s' boot entries to remove", self.label)
            return
        for entry in old:
            self.log.info("Removing boot entry Boot%s (%s)", entry.num, entry.label)
            try:
                self.executor.run(["efibootmgr", "-b", entry.num, "-B"])
            except CommandError as e:
                raise BootEntryError(f"failed to remove boot entry Boot{entry.num}: {e}") from e

    def create_new_boot_entry(self, template: ImageTemplate, path_map: Dict[str, str]) -> None:
        disk = template.disk.path
        if not disk:
            raise BootEntryError("no target disk path specified in the template")

        esp = template.esp_partition()
        if esp is None:
            raise BootEntryError("no EFI boot partition found in the disk partitions")

        dev = path_map.get(esp.id)
        if not dev:
            raise BootEntryError(f"no device found for EFI boot partition '{esp.id}'")

        loader = EFI_LOADERS.get(template.target.arch)
        if loader is None:
            raise BootEntryError(f"unsupported architecture for EFI boot entry: {template.target.arch}")

        try:
            self.executor.run(
                [
                    "efibootmgr",
                    "--create",
                    "--disk",
                    disk,
                    "--part",
                    str(part_number(dev)),
                    "--label",
                    self.label,
                    "--loader",
                    loader,
                ]
            )
        except CommandError as e:
            raise BootEntryError(f"failed to create boot entry: {e}") from e
        self.log.info("Created boot entry '%s' on %s (%s)", self.label, dev, loader)

    def update_boot_order(self, template: ImageTemplate, path_map: Dict[str, str]) -> None:
        if not template.is_efi:
            self.log.debug("Boot type %s: boot order left unchanged", template.boot_type)
            return

        current = self.list_boot_entries()
        ours = current.with_label(self.label)
        if not ours:
            if self.executor.dry_run:
                self.log.info("Dry run: boot entry '%s' was not created; order unchanged", self.label)
                return
            raise BootEntryError(f"boot entry '{self.label}' not found")

        first = ours[0].num
        new_order = [first] + [n for n in current.order if n != first]
        if new_order == current.order:
            self.log.info("Boot%s already first in boot order", first)
            return

        try:
            self.executor.run(["efibootmgr", "-o", ",".join(new_order)])
        except CommandError as e:
            raise BootEntryError(f"failed to update boot order: {e}") from e
        self.log.info("Boot order updated: %s", ",".join(new_order))
