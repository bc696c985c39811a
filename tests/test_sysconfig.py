"""Tests for user creation and bootloader installation (lib/sysconfig.py)."""

import stat

import pytest

from conftest import FakeExecutor, make_template
from live_installer.errors import ExecutionError
from live_installer.lib.sysconfig import SystemConfigurator
from live_installer.template import UserConfig


@pytest.fixture
def target(tmp_path):
    root = tmp_path / "mnt"
    root.mkdir()
    return root


def with_system(template, **changes):
    for key, value in changes.items():
        setattr(template.system_config, key, value)
    return template


class TestCreateUsers:
    def test_useradd_and_password(self, executor, target):
        users = [
            UserConfig(name="admin", password="s3cret", groups=["wheel", "video"], sudo=True),
            UserConfig(name="svc", shell="/sbin/nologin", home="/var/lib/svc"),
        ]

        SystemConfigurator(executor).create_users(users, str(target))

        root = str(target)
        assert executor.calls == [
            ["chroot", root, "useradd", "-m", "-s", "/bin/bash", "-G", "wheel,video", "admin"],
            ["chroot", root, "chpasswd"],
            ["chroot", root, "useradd", "-m", "-s", "/sbin/nologin", "-d", "/var/lib/svc", "svc"],
        ]
        sudoers = target / "etc/sudoers.d/admin"
        assert sudoers.read_text(encoding="utf-8") == "admin ALL=(ALL) ALL\n"
        assert stat.S_IMODE(sudoers.stat().st_mode) == 0o440
        assert not (target / "etc/sudoers.d/svc").exists()

    def test_password_goes_to_stdin(self, target, mocker):
        executor = FakeExecutor()
        run = mocker.spy(executor, "run")

        SystemConfigurator(executor).create_users([UserConfig(name="admin", password="s3cret")], str(target))

        argv, kwargs = run.call_args_list[1].args[0], run.call_args_list[1].kwargs
        assert "s3cret" not in " ".join(argv)
        assert kwargs["input_text"] == "admin:s3cret\n"

    def test_hashed_password(self, executor, target):
        user = UserConfig(name="admin", password="$6$salt$hash")
        SystemConfigurator(executor).create_users([user], str(target))
        assert executor.calls[1] == ["chroot", str(target), "chpasswd", "-e"]

    def test_useradd_failure(self, target):
        executor = FakeExecutor().on("useradd", returncode=9, stderr="user 'admin' already exists")

        with pytest.raises(ExecutionError, match="failed to create user admin"):
            SystemConfigurator(executor).create_users([UserConfig(name="admin", password="x")], str(target))
        assert len(executor.calls) == 1


class TestInstallBootloader:
    def test_grub_efi(self, executor, target):
        template = make_template("/dev/sda")

        SystemConfigurator(executor).install_bootloader(template, str(target))

        root = str(target)
        assert executor.calls == [
            [
                "chroot",
                root,
                "grub2-install",
                "--target=x86_64-efi",
                "--efi-directory=/boot/efi",
                "--removable",
                "--no-nvram",
            ],
            ["chroot", root, "grub2-mkconfig", "-o", "/boot/grub2/grub.cfg"],
        ]

    def test_grub_prefix_from_target(self, executor, target):
        (target / "usr/sbin").mkdir(parents=True)
        (target / "usr/sbin/grub-install").write_bytes(b"")
        template = make_template("/dev/sda")
        template.target.arch = "aarch64"

        SystemConfigurator(executor).install_bootloader(template, str(target))

        assert executor.calls[0][2:4] == ["grub-install", "--target=arm64-efi"]
        assert executor.calls[1][2:] == ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"]

    def test_grub_legacy_targets_disk(self, executor, target):
        template = make_template("/dev/sda", boot_type="legacy")

        SystemConfigurator(executor).install_bootloader(template, str(target))

        assert executor.calls[0] == ["chroot", str(target), "grub2-install", "--target=i386-pc", "/dev/sda"]

    def test_legacy_unsupported_arch(self, executor, target):
        template = make_template("/dev/sda", boot_type="legacy")
        template.target.arch = "arm64"

        with pytest.raises(ExecutionError, match="legacy boot is not supported on arm64"):
            SystemConfigurator(executor).install_bootloader(template, str(target))
        assert executor.calls == []

    def test_kernel_cmdline_replaced(self, executor, target):
        grub = target / "etc/default/grub"
        grub.parent.mkdir(parents=True)
        grub.write_text('GRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX="quiet"\n', encoding="utf-8")
        template = make_template("/dev/sda")
        template.system_config.kernel.cmdline = "console=ttyS0 rootwait"

        SystemConfigurator(executor).install_bootloader(template, str(target))

        assert grub.read_text(encoding="utf-8") == 'GRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX="console=ttyS0 rootwait"\n'

    def test_kernel_cmdline_appended(self, executor, target):
        template = make_template("/dev/sda")
        template.system_config.kernel.cmdline = "console=ttyS0"

        SystemConfigurator(executor).install_bootloader(template, str(target))

        assert (target / "etc/default/grub").read_text(encoding="utf-8") == 'GRUB_CMDLINE_LINUX="console=ttyS0"\n'

    def test_systemd_boot(self, executor, target):
        template = make_template("/dev/sda")
        template.system_config.bootloader.provider = "systemd-boot"
        template.system_config.kernel.cmdline = "root=LABEL=rootfs"

        SystemConfigurator(executor).install_bootloader(template, str(target))

        assert executor.calls == [
            ["chroot", str(target), "bootctl", "install", "--esp-path=/boot/efi", "--no-variables"]
        ]
        assert (target / "etc/kernel/cmdline").read_text(encoding="utf-8") == "root=LABEL=rootfs\n"

    def test_unsupported_provider(self, executor, target):
        template = make_template("/dev/sda")
        template.system_config.bootloader.provider = "lilo"

        with pytest.raises(ExecutionError, match="unsupported bootloader provider: lilo"):
            SystemConfigurator(executor).install_bootloader(template, str(target))

    def test_esp_without_mount_point(self, executor, target):
        template = make_template(
            "/dev/sda",
            partitions=[
                {"id": "boot", "type": "esp", "fsType": "fat32", "start": "1MiB", "end": "513MiB"},
                {"id": "rootfs", "start": "513MiB", "end": "0", "mountPoint": "/"},
            ],
        )
        with pytest.raises(ExecutionError, match="'esp' partition with a mount point"):
            SystemConfigurator(executor).install_bootloader(template, str(target))

    def test_install_failure(self, target):
        executor = FakeExecutor().on("grub2-install", returncode=1, stderr="cannot find EFI directory")

        with pytest.raises(ExecutionError, match="failed to install bootloader"):
            SystemConfigurator(executor).install_bootloader(make_template("/dev/sda"), str(target))
        assert len(executor.calls) == 1


class TestConfigure:
    def test_users_before_bootloader(self, executor, target):
        template = with_system(make_template("/dev/sda"), users=[UserConfig(name="edge")])

        SystemConfigurator(executor).configure(template, str(target))

        assert [c[2] for c in executor.calls] == ["useradd", "grub2-install", "grub2-mkconfig"]
