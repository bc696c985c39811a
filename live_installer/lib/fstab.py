from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

_HEADER = "# /etc/fstab: generated by live-installer\n"


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 0

    def render(self) -> str:
        return f"{self.spec}\t{self.mountpoint}\t{self.fstype}\t{self.options}\t{self.dump}\t{self.passno}"


def render_fstab(entries: Iterable[FstabEntry]) -> str:
    lines = [e.render() for e in entries]
    return _HEADER + "\n".join(lines) + "\n"
