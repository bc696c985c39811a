"""Package installers for the chroot installation root.

Two variants share one ``install`` operation: RPM-style (raw ``rpm --root``
from an on-media package cache) and Debian-style (``mmdebstrap`` against a
file:// repo). The variant is picked once, from the build profile's pkgType.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Protocol, Sequence, Type

from ..errors import CommandError, ConfigError, PackageInstallError
from .chroot import bind_mount, chroot_cmd, mount_chroot_binds, umount, umount_chroot_binds
from .command import CommandExecutor

if TYPE_CHECKING:
    from .osconfig import ChrootBuilder

logger = logging.getLogger(__name__)

# progress (0..100), status line
ReportFn = Callable[[int, str], None]

# Where the Debian local repo is expected by the file-mirror hooks.
DEB_REPO_MOUNT = "/cdrom/cache-repo"

# Package carrying the distro GPG keys, per target OS.
_GPG_KEY_PACKAGES = {
    "azure-linux": "azurelinux-repos-shared",
    "edge-microvisor-toolkit": "edge-repos-shared",
}


class PackageInstaller(Protocol):
    pkg_type: str

    def install(
        self,
        executor: CommandExecutor,
        builder: "ChrootBuilder",
        chroot_root: str,
        packages: Sequence[str],
        report: ReportFn,
    ) -> None:
        ...


def _remove_chroot(executor: CommandExecutor, chroot_root: str) -> None:
    r = executor.run(["rm", "-rf", chroot_root], check=False)
    if r.ok:
        logger.info("Removed chroot environment build path: %s", chroot_root)
    else:
        logger.error("Failed to remove chroot environment build path %s: %s", chroot_root, r.stderr.strip())


class RpmInstaller:
    pkg_type = "rpm"

    def find_rpms(self, cache_dir: str, packages: Sequence[str]) -> List[Path]:
        """Return every rpm in the cache, after checking each requested package is present.

        The on-media cache holds the already-resolved dependency closure, so
        everything in it gets installed.
        """

        cache = Path(cache_dir)
        if not cache.is_dir():
            raise PackageInstallError(f"package cache directory does not exist: {cache_dir}")

        rpms = sorted(cache.glob("*.rpm"))
        names = {p.name for p in rpms}
        missing = [pkg for pkg in packages if not any(n.startswith(f"{pkg}-") for n in names)]
        if missing:
            raise PackageInstallError(
                f"packages do not exist in cache directory {cache_dir}: {', '.join(missing)}"
            )
        return rpms

    def install(
        self,
        executor: CommandExecutor,
        builder: "ChrootBuilder",
        chroot_root: str,
        packages: Sequence[str],
        report: ReportFn,
    ) -> None:
        rpms = self.find_rpms(builder.pkg_cache_dir, packages)
        report(0, f"Installing {len(rpms)} packages into {chroot_root}")

        if not executor.dry_run:
            (Path(chroot_root) / "var/lib/rpm").mkdir(parents=True, exist_ok=True)

        failed = False
        try:
            try:
                mount_chroot_binds(executor, chroot_root)
            except CommandError as e:
                raise PackageInstallError(f"failed to prepare chroot environment {chroot_root}: {e}") from e

            for i, rpm in enumerate(rpms, start=1):
                report(int(i * 90 / len(rpms)), f"Installing package {rpm.name}")
                try:
                    executor.run(
                        [
                            "rpm",
                            "-i",
                            "-v",
                            "--nodeps",
                            "--noorder",
                            "--force",
                            "--root",
                            chroot_root,
                            "--define",
                            "_dbpath /var/lib/rpm",
                            str(rpm),
                        ]
                    )
                except CommandError as e:
                    raise PackageInstallError(f"failed to install package {rpm.name}: {e}") from e

            self._import_gpg_keys(executor, builder.target_os, chroot_root)
        except PackageInstallError:
            failed = True
            raise
        finally:
            # Binds must be gone before the tree can be removed.
            umount_chroot_binds(executor, chroot_root)
            if failed:
                _remove_chroot(executor, chroot_root)

        report(100, "Package installation complete")

    def _import_gpg_keys(self, executor: CommandExecutor, target_os: str, chroot_root: str) -> None:
        repo_pkg = _GPG_KEY_PACKAGES.get(target_os)
        if repo_pkg is None:
            logger.info("No GPG key package known for %s; skipping key import", target_os)
            return

        r = chroot_cmd(executor, chroot_root, ["rpm", "-q", "-l", repo_pkg], check=False)
        keys = [line.strip() for line in r.stdout.splitlines() if "rpm-gpg" in line]
        if not r.ok or not keys:
            if executor.dry_run:
                return
            raise PackageInstallError("no GPG keys found in the chroot environment")

        logger.info("Importing GPG key: %s", keys[0])
        try:
            chroot_cmd(executor, chroot_root, ["rpm", "--import", keys[0]])
        except CommandError as e:
            raise PackageInstallError(f"failed to import GPG key: {e}") from e


class DebInstaller:
    pkg_type = "deb"

    def install(
        self,
        executor: CommandExecutor,
        builder: "ChrootBuilder",
        chroot_root: str,
        packages: Sequence[str],
        report: ReportFn,
    ) -> None:
        local_list = Path(builder.target_os_config_dir) / "chrootenvconfigs" / "local.list"
        if not local_list.is_file():
            raise ConfigError(f"local repository config file does not exist: {local_list}")

        report(0, f"Mounting local repository {builder.pkg_cache_dir}")
        bind_mount(executor, builder.pkg_cache_dir, DEB_REPO_MOUNT)
        try:
            if not executor.dry_run:
                Path(chroot_root).mkdir(parents=True, exist_ok=True)

            report(10, f"Bootstrapping {len(packages)} packages with mmdebstrap")
            executor.run(
                [
                    "mmdebstrap",
                    "--variant=custom",
                    "--format=directory",
                    "--aptopt=APT::Authentication::Trusted=true",
                    "--hook-dir=/usr/share/mmdebstrap/hooks/file-mirror-automount",
                    f"--include={','.join(packages)}",
                    "--verbose",
                    "--",
                    builder.profile.dist,
                    chroot_root,
                    str(local_list),
                ]
            )
        except CommandError as e:
            _remove_chroot(executor, chroot_root)
            raise PackageInstallError(f"failed to install debian packages in chroot environment: {e}") from e
        finally:
            umount(executor, DEB_REPO_MOUNT)

        report(100, "Package installation complete")


INSTALLERS: Dict[str, Type[PackageInstaller]] = {
    RpmInstaller.pkg_type: RpmInstaller,
    DebInstaller.pkg_type: DebInstaller,
}


def installer_for(pkg_type: str) -> PackageInstaller:
    try:
        return INSTALLERS[pkg_type]()
    except KeyError:
        raise ConfigError(f"unsupported package type: {pkg_type}") from None
