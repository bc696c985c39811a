from __future__ import annotations

import logging
import re

from ..errors import ExecutionError
from .command import CommandExecutor

logger = logging.getLogger(__name__)


def get_uuid(executor: CommandExecutor, dev: str) -> str:
    """Return filesystem UUID for a block device."""

    r = executor.run(["blkid", "-s", "UUID", "-o", "value", dev])
    uuid = (r.stdout or "").strip()
    if not uuid and not executor.dry_run:
        raise ExecutionError(f"Unable to determine UUID for {dev}")
    return uuid


def get_size_bytes(executor: CommandExecutor, dev: str) -> int:
    r = executor.run(["blockdev", "--getsize64", dev], readonly=True)
    out = (r.stdout or "").strip()
    if not out.isdigit():
        raise ExecutionError(f"Unable to determine size of {dev}: {out!r}")
    return int(out)


def part_device(disk: str, n: int) -> str:
    # nvme/mmcblk/loop devices use p suffix
    if disk.endswith(tuple("0123456789")):
        return f"{disk}p{n}"
    return f"{disk}{n}"


_PART_NUM_RE = re.compile(r"(\d+)$")


def part_number(dev: str) -> int:
    m = _PART_NUM_RE.search(dev)
    if not m:
        raise ExecutionError(f"Unable to determine partition number of {dev}")
    return int(m.group(1))
