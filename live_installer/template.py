"""Image template model and loader.

A template is the full provisioning intent: what to install (target OS,
packages, users) and where (disk plan). Templates are YAML documents using
camelCase keys; the models below accept both camelCase and snake_case.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Literal, Optional

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field

from .errors import TemplateError

logger = logging.getLogger(__name__)

ESP_PARTITION_TYPE = "esp"


class _TemplateModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", validate_assignment=True)


class ImageInfo(_TemplateModel):
    name: str = ""
    version: str = ""


class TargetInfo(_TemplateModel):
    os: str
    dist: str
    arch: str
    image_type: str = Field(default="raw", alias="imageType")


class PartitionSpec(_TemplateModel):
    id: str
    name: str = ""
    type: str = "linux"
    fs_type: str = Field(default="ext4", alias="fsType")
    start: str = "1MiB"
    # "0" means: use the rest of the disk.
    end: str = "0"
    mount_point: str = Field(default="", alias="mountPoint")
    mount_options: str = Field(default="defaults", alias="mountOptions")
    flags: List[str] = Field(default_factory=list)

    @property
    def is_esp(self) -> bool:
        return self.type == ESP_PARTITION_TYPE


class DiskConfig(_TemplateModel):
    path: str = ""
    partition_table_type: Literal["gpt", "mbr"] = Field(default="gpt", alias="partitionTableType")
    partitions: List[PartitionSpec] = Field(default_factory=list)

    @pydantic.model_validator(mode="after")
    def _check_partitions(self) -> "DiskConfig":
        ids = [p.id for p in self.partitions]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate partition ids: {', '.join(dupes)}")

        mounts = [p.mount_point for p in self.partitions if p.mount_point]
        for mp in mounts:
            if not mp.startswith("/"):
                raise ValueError(f"mount point must start with '/': {mp}")
        dupes = sorted({m for m in mounts if mounts.count(m) > 1})
        if dupes:
            raise ValueError(f"duplicate mount points: {', '.join(dupes)}")
        return self


class Bootloader(_TemplateModel):
    boot_type: Literal["efi", "legacy"] = Field(default="efi", alias="bootType")
    provider: str = "grub2"


class UserConfig(_TemplateModel):
    name: str
    password: Optional[str] = None
    groups: List[str] = Field(default_factory=list)
    sudo: bool = False
    shell: str = "/bin/bash"
    home: str = ""


class KernelConfig(_TemplateModel):
    version: str = ""
    cmdline: str = ""


class SystemConfig(_TemplateModel):
    name: str = ""
    description: str = ""
    hostname: str = ""
    bootloader: Bootloader = Field(default_factory=Bootloader)
    users: List[UserConfig] = Field(default_factory=list)
    packages: List[str] = Field(default_factory=list)
    kernel: KernelConfig = Field(default_factory=KernelConfig)


class ImageTemplate(_TemplateModel):
    image: ImageInfo = Field(default_factory=ImageInfo)
    target: TargetInfo
    disk: DiskConfig = Field(default_factory=DiskConfig)
    system_config: SystemConfig = Field(default_factory=SystemConfig, alias="systemConfig")

    @property
    def boot_type(self) -> str:
        return self.system_config.bootloader.boot_type

    @property
    def is_efi(self) -> bool:
        return self.boot_type == "efi"

    def esp_partition(self) -> Optional[PartitionSpec]:
        return next((p for p in self.disk.partitions if p.is_esp), None)

    def root_partition(self) -> Optional[PartitionSpec]:
        return next((p for p in self.disk.partitions if p.mount_point == "/"), None)


def load_template(path: str) -> ImageTemplate:
    """Load and validate an image template from a YAML file."""

    p = Path(path)
    if not p.is_file():
        raise TemplateError(f"template file does not exist: {path}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise TemplateError(f"failed to parse template {path}: {e}") from e

    if not isinstance(raw, dict):
        raise TemplateError(f"template must contain a mapping/object: {path}")

    try:
        template = ImageTemplate.model_validate(raw)
    except pydantic.ValidationError as e:
        raise TemplateError(f"template validation failed for {path}: {e}") from e

    logger.info(
        "Loaded template %s (target=%s/%s/%s, partitions=%d)",
        path,
        template.target.os,
        template.target.dist,
        template.target.arch,
        len(template.disk.partitions),
    )
    return template
