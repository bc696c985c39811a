from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..errors import CommandError, ExecutionError, PartitionPlanError, PreconditionError
from ..template import ESP_PARTITION_TYPE, ImageTemplate, PartitionSpec
from .block import get_size_bytes, get_uuid, part_device
from .chroot import mount_chroot_binds, umount_chroot_binds
from .command import CommandExecutor
from .fstab import FstabEntry, render_fstab

logger = logging.getLogger(__name__)

SECTOR_SIZE = 512
# Backup GPT header + entries at the end of the disk.
GPT_TAIL_RESERVED = 34 * SECTOR_SIZE

DISALLOWED_ROOT_FS = {"vfat", "fat16", "fat32", "swap", "linux-swap"}

_SIZE_RE = re.compile(r"^(\d+)([A-Za-z]*)$")
_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
    "TiB": 1024**4,
    "KB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "TB": 1000**4,
}

# sgdisk type codes
_TYPE_CODES = {
    ESP_PARTITION_TYPE: "ef00",
    "swap": "8200",
    "linux-root-amd64": "8304",
    "linux-root-arm64": "8305",
    "bios-grub": "ef02",
}
_DEFAULT_TYPE_CODE = "8300"

_MKFS = {
    "ext2": ["mkfs.ext2", "-F"],
    "ext3": ["mkfs.ext3", "-F"],
    "ext4": ["mkfs.ext4", "-F"],
    "xfs": ["mkfs.xfs", "-f"],
    "btrfs": ["mkfs.btrfs", "-f"],
    "vfat": ["mkfs.vfat", "-F", "32"],
    "fat32": ["mkfs.vfat", "-F", "32"],
    "fat16": ["mkfs.vfat", "-F", "16"],
    "swap": ["mkswap"],
    "linux-swap": ["mkswap"],
}

_FSTAB_TYPES = {"fat32": "vfat", "fat16": "vfat", "linux-swap": "swap"}

# Pseudo filesystems are bind-mounted into the chroot; never copy them.
_RSYNC_EXCLUDES = ["/dev/*", "/proc/*", "/sys/*", "/run/*", "/tmp/*"]

DiskPathIdMap = Dict[str, str]


def parse_size(value: str) -> int:
    """Translate a size string ("512MiB", "2GB", "0", "4096") to bytes."""

    m = _SIZE_RE.match(str(value).strip())
    if not m or m.group(2) not in _SIZE_UNITS:
        raise PartitionPlanError(f"unexpected partition size '{value}'")
    return int(m.group(1)) * _SIZE_UNITS[m.group(2)]


@dataclass(frozen=True)
class PlannedPartition:
    number: int
    spec: PartitionSpec
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


class DiskFinalizer:
    """Applies a template's partition plan to the target disk.

    No rollback: if a step fails after the disk was wiped, the disk is left
    as-is and the error is surfaced.
    """

    def __init__(self, executor: CommandExecutor, log: Optional[logging.Logger] = None) -> None:
        self.executor = executor
        self.log = log or logger

    # -- preconditions -------------------------------------------------

    def check_template(self, template: ImageTemplate) -> PartitionSpec:
        """Checks that need no disk access; returns the root partition."""

        disk = template.disk
        if not disk.path:
            raise PreconditionError("no target disk path specified in the template")
        if not os.path.exists(disk.path):
            raise PreconditionError(f"target disk does not exist: {disk.path}")

        if template.is_efi:
            if not disk.partitions or disk.partitions[0].type != ESP_PARTITION_TYPE:
                raise PartitionPlanError(
                    f"invalid boot partition: the first partition must be of type '{ESP_PARTITION_TYPE}'"
                )
            esp_ids = [p.id for p in disk.partitions if p.is_esp]
            if len(esp_ids) > 1:
                raise PartitionPlanError(
                    f"only one partition can be of type '{ESP_PARTITION_TYPE}', found: {', '.join(esp_ids)}"
                )

        root = template.root_partition()
        if root is None:
            raise PartitionPlanError("must specify a partition to have the mount point '/'")
        if root.fs_type in DISALLOWED_ROOT_FS:
            raise PartitionPlanError(f"root partition cannot be {root.fs_type}")
        return root

    def plan(self, template: ImageTemplate, disk_size: int) -> List[PlannedPartition]:
        usable = disk_size
        if template.disk.partition_table_type == "gpt":
            usable -= GPT_TAIL_RESERVED

        partitions = template.disk.partitions
        planned: List[PlannedPartition] = []
        used = 0
        prev_end = 0
        for number, spec in enumerate(partitions, start=1):
            start = parse_size(spec.start)
            rest_of_disk = parse_size(spec.end) == 0
            if rest_of_disk and number != len(partitions):
                raise PartitionPlanError(
                    f"only the last partition can use the remaining space, not partition ({number})"
                )
            end = usable if rest_of_disk else parse_size(spec.end)
            if end <= start:
                raise PartitionPlanError(f"unexpected partition size '{spec.start}'..'{spec.end}'")
            if start < prev_end:
                raise PartitionPlanError(f"partition ({number}) overlaps partition ({number - 1})")
            used += end - start
            if end > usable or used > usable:
                raise PartitionPlanError(f"device space exceeded by partition ({number})")
            planned.append(PlannedPartition(number=number, spec=spec, start=start, end=end))
            prev_end = end
        return planned

    # -- mutation ------------------------------------------------------

    def apply_partitions(self, template: ImageTemplate) -> DiskPathIdMap:
        """Partition and format the target disk; returns partition id -> device node."""

        self.check_template(template)
        # Partition nodes derive from the kernel name, not a /dev/disk/by-* link.
        disk = os.path.realpath(template.disk.path)
        planned = self.plan(template, get_size_bytes(self.executor, disk))

        self.log.info(
            "Partitioning disk=%s table=%s partitions=%d",
            disk,
            template.disk.partition_table_type,
            len(planned),
        )
        self._wipe(disk)
        if template.disk.partition_table_type == "gpt":
            self._create_gpt(disk, planned)
        else:
            self._create_mbr(disk, planned)

        # Inform kernel
        self.executor.run(["partprobe", disk])

        path_map: DiskPathIdMap = {}
        for part in planned:
            dev = part_device(disk, part.number)
            self._format(part.spec, dev)
            path_map[part.spec.id] = dev

        template.disk.path = disk
        self.log.info("Disk partitioned: %s", path_map)
        return path_map

    def _wipe(self, disk: str) -> None:
        self.executor.run(["wipefs", "-a", disk])
        self.executor.run(["sgdisk", "--zap-all", disk])

    def _create_gpt(self, disk: str, planned: List[PlannedPartition]) -> None:
        self.executor.run(["sgdisk", "--clear", disk])
        for part in planned:
            n = part.number
            try:
                self.executor.run(
                    [
                        "sgdisk",
                        f"--new={n}:{part.start // SECTOR_SIZE}:{part.end // SECTOR_SIZE - 1}",
                        f"--typecode={n}:{_TYPE_CODES.get(part.spec.type, _DEFAULT_TYPE_CODE)}",
                        f"--change-name={n}:{part.spec.name or part.spec.id}",
                        disk,
                    ]
                )
            except CommandError as e:
                raise ExecutionError(f"failed to create partition {part.spec.id} ({n}): {e}") from e

    def _create_mbr(self, disk: str, planned: List[PlannedPartition]) -> None:
        self.executor.run(["parted", "-s", disk, "mklabel", "msdos"])
        for part in planned:
            try:
                self.executor.run(
                    ["parted", "-s", disk, "mkpart", "primary", f"{part.start}B", f"{part.end - 1}B"]
                )
            except CommandError as e:
                raise ExecutionError(f"failed to create partition {part.spec.id} ({part.number}): {e}") from e

    def _format(self, spec: PartitionSpec, dev: str) -> None:
        if spec.fs_type in ("", "none"):
            self.log.info("Partition %s (%s) left unformatted", spec.id, dev)
            return
        mkfs = _MKFS.get(spec.fs_type)
        if mkfs is None:
            raise ExecutionError(f"unsupported filesystem type for partition {spec.id}: {spec.fs_type}")
        try:
            self.executor.run([*mkfs, dev])
        except CommandError as e:
            raise ExecutionError(f"failed to format partition {spec.id} ({dev}): {e}") from e

    # -- root filesystem -----------------------------------------------

    def install_root(
        self,
        template: ImageTemplate,
        path_map: DiskPathIdMap,
        chroot_root: str,
        mount_dir: str,
        configure: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Mount the new partitions, copy the installation root, write fstab/hostname.

        ``configure`` is called with ``mount_dir`` while the target is still
        mounted and /dev, /proc and /sys are bound into it.
        """

        mountable = [p for p in template.disk.partitions if p.mount_point]
        # Parents before children: "/" then "/boot" then "/boot/efi".
        mountable.sort(key=lambda p: len(Path(p.mount_point).parts))

        mounted: List[str] = []
        try:
            for spec in mountable:
                target = str(Path(mount_dir) / spec.mount_point.lstrip("/"))
                if not self.executor.dry_run:
                    Path(target).mkdir(parents=True, exist_ok=True)
                self.executor.run(["mount", path_map[spec.id], target])
                mounted.append(target)

            argv = ["rsync", "-aHAX"]
            for ex in _RSYNC_EXCLUDES:
                argv.append(f"--exclude={ex}")
            self.executor.run([*argv, f"{chroot_root.rstrip('/')}/", f"{mount_dir.rstrip('/')}/"])

            self._write_fstab(template, path_map, mount_dir)
            self._write_hostname(template, mount_dir)

            if configure is not None:
                try:
                    mount_chroot_binds(self.executor, mount_dir)
                    configure(mount_dir)
                finally:
                    umount_chroot_binds(self.executor, mount_dir)
        except CommandError as e:
            raise ExecutionError(f"failed to install root filesystem: {e}") from e
        finally:
            for target in reversed(mounted):
                r = self.executor.run(["umount", target], check=False)
                if not r.ok:
                    self.log.warning("Failed to unmount %s: %s", target, r.stderr.strip())

    def fstab_entries(self, template: ImageTemplate, path_map: DiskPathIdMap) -> List[FstabEntry]:
        entries: List[FstabEntry] = []
        for spec in template.disk.partitions:
            fstype = _FSTAB_TYPES.get(spec.fs_type, spec.fs_type)
            if fstype in ("", "none"):
                continue
            uuid = get_uuid(self.executor, path_map[spec.id])
            if fstype == "swap":
                entries.append(FstabEntry(spec=f"UUID={uuid}", mountpoint="none", fstype="swap", options="sw"))
            elif spec.mount_point:
                entries.append(
                    FstabEntry(
                        spec=f"UUID={uuid}",
                        mountpoint=spec.mount_point,
                        fstype=fstype,
                        options=spec.mount_options or "defaults",
                        passno=1 if spec.mount_point == "/" else 2,
                    )
                )
        return entries

    def _write_fstab(self, template: ImageTemplate, path_map: DiskPathIdMap, mount_dir: str) -> None:
        contents = render_fstab(self.fstab_entries(template, path_map))
        fstab_path = Path(mount_dir) / "etc/fstab"
        if self.executor.dry_run:
            self.log.info("Would write %s", fstab_path)
            return
        fstab_path.parent.mkdir(parents=True, exist_ok=True)
        fstab_path.write_text(contents, encoding="utf-8")
        self.log.info("Wrote %s", fstab_path)

    def _write_hostname(self, template: ImageTemplate, mount_dir: str) -> None:
        hostname = template.system_config.hostname
        if not hostname or self.executor.dry_run:
            return
        p = Path(mount_dir) / "etc/hostname"
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(hostname + "\n", encoding="utf-8")
