"""Build profile resolution.

Layout under the config root::

    osv/<os>/<dist>/config.yml
    osv/<os>/<dist>/chrootenvconfigs/chrootenv_<arch>.yml

``config.yml`` maps an architecture name to its build profile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..errors import ConfigError, ProfileValidationError
from ..template import ImageTemplate
from .command import CommandExecutor
from .env import PATHS
from .pkg import PackageInstaller, ReportFn, installer_for

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yml"


class BuildProfile(BaseModel):
    """Per-architecture build profile (one entry of config.yml)."""

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True, populate_by_name=True)

    dist: str
    arch: str
    pkg_type: Literal["rpm", "deb"] = Field(alias="pkgType")
    chrootenv_config_file: str = Field(alias="chrootenvConfigFile")
    release_version: str = Field(alias="releaseVersion")


_PROFILE_DOCUMENT = pydantic.TypeAdapter(Dict[str, BuildProfile])


def target_os_config_dir(config_root: str, os_family: str, dist_version: str) -> Path:
    return Path(config_root) / "osv" / os_family / dist_version


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to read target OS config file {path}: {e}") from e


def load_profiles(config_file: Path) -> Dict[str, BuildProfile]:
    """Parse and validate every architecture entry of a config.yml."""

    raw = _read_yaml(config_file)
    try:
        return _PROFILE_DOCUMENT.validate_python(raw)
    except pydantic.ValidationError as e:
        raise ProfileValidationError(f"build profile validation failed for {config_file}: {e}") from e


@dataclass
class ChrootBuilder:
    """Builds the chroot installation root for one (os, dist, arch).

    The package installer is bound at construction and never switched.
    """

    target_os: str
    target_dist: str
    target_arch: str
    target_os_config_dir: str
    profile: BuildProfile
    pkg_cache_dir: str
    installer: PackageInstaller
    build_dir: str = PATHS.chroot_build_dir
    executor: CommandExecutor = field(default_factory=CommandExecutor)

    @property
    def chroot_root(self) -> str:
        return str(Path(self.build_dir) / "chroot")

    @property
    def chrootenv_config_path(self) -> Path:
        return Path(self.target_os_config_dir) / self.profile.chrootenv_config_file

    def _chrootenv_config(self) -> Dict[str, Any]:
        path = self.chrootenv_config_path
        if not path.is_file():
            raise ConfigError(f"chroot environment config file does not exist: {path}")
        data = _read_yaml(path) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"chroot environment config must be a mapping: {path}")
        return data

    def _package_list(self, key: str, *, required: bool) -> List[str]:
        cfg = self._chrootenv_config()
        if key not in cfg:
            if required:
                raise ConfigError(f"{key} field not found in chroot environment config")
            return []
        raw = cfg[key]
        if not isinstance(raw, list):
            raise ConfigError(f"{key} field is not a list in chroot environment config")
        for pkg in raw:
            if not isinstance(pkg, str):
                raise ConfigError(f"invalid package format in chroot environment config: {pkg!r}")
        return list(raw)

    def essential_packages(self) -> List[str]:
        return self._package_list("essential", required=False)

    def packages(self) -> List[str]:
        return self._package_list("packages", required=True)

    def package_list(self, template: Optional[ImageTemplate] = None) -> List[str]:
        """Essential + chroot-env + template packages, de-duplicated in order."""

        pkgs = self.essential_packages() + self.packages()
        if template is not None:
            pkgs += template.system_config.packages
        return list(dict.fromkeys(pkgs))

    def build(self, template: ImageTemplate, report: ReportFn) -> str:
        """Populate the chroot installation root; returns its path."""

        pkgs = self.package_list(template)
        root = self.chroot_root
        logger.info(
            "Building chroot for %s/%s/%s (%s, %d packages) at %s",
            self.target_os,
            self.target_dist,
            self.target_arch,
            self.profile.pkg_type,
            len(pkgs),
            root,
        )
        if not self.executor.dry_run:
            Path(root).mkdir(parents=True, exist_ok=True)
        self.installer.install(self.executor, self, root, pkgs, report)
        return root


def resolve(
    config_root: str,
    repo_path: str,
    os_family: str,
    dist_version: str,
    arch: str,
    *,
    executor: Optional[CommandExecutor] = None,
    build_dir: Optional[str] = None,
) -> ChrootBuilder:
    """Locate and validate the build profile, and return a ChrootBuilder for it."""

    config_dir = target_os_config_dir(config_root, os_family, dist_version)
    if not config_dir.is_dir():
        logger.error("Target OS config directory does not exist: %s", config_dir)
        raise ConfigError(f"target OS config directory does not exist: {config_dir}")

    config_file = config_dir / CONFIG_FILE_NAME
    if not config_file.is_file():
        logger.error("Target OS config file does not exist: %s", config_file)
        raise ConfigError(f"target OS config file does not exist: {config_file}")

    profiles = load_profiles(config_file)
    profile = profiles.get(arch)
    if profile is None:
        raise ConfigError(
            f"target OS {os_family} config for architecture {arch} not found in {config_file}"
        )

    installer = installer_for(profile.pkg_type)
    logger.info(
        "Resolved build profile %s/%s/%s: dist=%s pkgType=%s release=%s",
        os_family,
        dist_version,
        arch,
        profile.dist,
        profile.pkg_type,
        profile.release_version,
    )

    return ChrootBuilder(
        target_os=os_family,
        target_dist=dist_version,
        target_arch=arch,
        target_os_config_dir=str(config_dir),
        profile=profile,
        pkg_cache_dir=repo_path,
        installer=installer,
        build_dir=build_dir or PATHS.chroot_build_dir,
        executor=executor or CommandExecutor(),
    )
