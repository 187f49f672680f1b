"""Tests for the family-specific package installers."""

import pytest

from penguins_recovery.errors import PackageInstallError, UnsupportedFamilyError
from penguins_recovery.lib.distro import DistroFamily
from penguins_recovery.lib.pkg import (
    INSTALLERS,
    ApkInstaller,
    AptInstaller,
    DnfInstaller,
    EmergeInstaller,
    InstallFlags,
    PacmanInstaller,
    ZypperInstaller,
    installer_for,
)

NO_BASELINE = InstallFlags(include_baseline=False)


class TestInstallerFor:
    @pytest.mark.parametrize("family", [f for f in DistroFamily if f is not DistroFamily.UNKNOWN])
    def test_every_known_family_has_an_installer(self, family):
        assert installer_for(family).family is family

    def test_unknown_family(self):
        with pytest.raises(UnsupportedFamilyError):
            installer_for(DistroFamily.UNKNOWN)


class TestEmptyPackageSet:
    """No package-manager call at all for an empty set."""

    @pytest.mark.parametrize("cls", list(INSTALLERS.values()))
    def test_no_calls(self, cls, fake_run, rootfs):
        report = cls().install_packages(rootfs, [], NO_BASELINE)

        assert fake_run.calls == []
        assert report.installed == []


class TestPackagesFor:
    def test_baseline_and_rescapp_extras_are_deduplicated(self):
        inst = AptInstaller()

        wanted = inst.packages_for(["less", "parted"], InstallFlags(with_rescapp=True))

        assert wanted[:2] == ["less", "parted"]
        assert wanted.count("less") == 1
        assert "python3-pyqt5" in wanted
        assert "sudo" in wanted

    def test_no_rescapp_extras_by_default(self):
        assert "kdialog" not in PacmanInstaller().packages_for(["parted"], InstallFlags())


class TestAptInstaller:
    def test_sync_install_clean_sequence(self, fake_run, rootfs):
        AptInstaller().install_packages(rootfs, ["parted", "gdisk"], NO_BASELINE)

        inner = fake_run.inner_calls()
        assert inner[0] == ["apt-get", "update", "-qq"]
        assert ["apt-get", "install", "-y", "--no-install-recommends", "parted", "gdisk"] in inner
        assert inner[-2] == ["apt-get", "clean"]
        assert inner[-1] == ["sh", "-c", "rm -rf /var/lib/apt/lists/*"]

    def test_install_runs_noninteractive(self, fake_run, rootfs):
        AptInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)

        (install,) = fake_run.ran("apt-get", "install")
        assert "DEBIAN_FRONTEND=noninteractive" in install

    def test_unknown_packages_are_skipped(self, fake_run, rootfs):
        fake_run.on("apt-cache", "show", "sbctl", returncode=100)

        report = AptInstaller().install_packages(rootfs, ["parted", "sbctl"], NO_BASELINE)

        (install,) = fake_run.ran("apt-get", "install")
        assert "sbctl" not in install
        assert report.skipped == ["sbctl"]
        assert report.installed == ["parted"]

    def test_failed_transaction_is_fatal(self, fake_run, rootfs):
        fake_run.on("apt-get", "install", returncode=100, stderr="E: Broken packages")

        with pytest.raises(PackageInstallError, match="Broken packages"):
            AptInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)


class TestDnfInstaller:
    @pytest.mark.parametrize(
        "binary,skip_flag",
        [("dnf5", "--skip-unavailable"), ("dnf", "--skip-broken"), ("yum", "--skip-broken")],
    )
    def test_manager_is_picked_from_rootfs(self, fake_run, rootfs, binary, skip_flag):
        (rootfs / "usr/bin").mkdir(parents=True)
        (rootfs / "usr/bin" / binary).write_text("")

        DnfInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)

        assert [binary, "install", "-y", skip_flag, "parted"] in fake_run.inner_calls()
        assert fake_run.inner_calls()[-1] == [binary, "clean", "all"]

    def test_dangling_absolute_symlink_still_counts(self, fake_run, rootfs):
        (rootfs / "usr/bin").mkdir(parents=True)
        (rootfs / "usr/bin" / "dnf5").symlink_to("/usr/libexec/does-not-exist-on-host")

        assert DnfInstaller().manager(rootfs) == "dnf5"


class TestPacmanInstaller:
    def test_keyring_initialized_when_missing(self, fake_run, rootfs):
        PacmanInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)

        inner = fake_run.inner_calls()
        assert inner[:3] == [
            ["pacman-key", "--init"],
            ["pacman-key", "--populate", "archlinux"],
            ["pacman", "-Sy", "--noconfirm"],
        ]
        assert ["pacman", "-S", "--noconfirm", "--needed", "parted"] in inner

    def test_existing_keyring_is_reused(self, fake_run, rootfs):
        (rootfs / "etc/pacman.d/gnupg").mkdir(parents=True)

        PacmanInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)

        assert not fake_run.ran("pacman-key")

    def test_transaction_is_atomic(self, fake_run, rootfs):
        fake_run.on("pacman", "-S", "--noconfirm", "--needed", returncode=1, stderr="target not found: sbctl")

        with pytest.raises(PackageInstallError) as exc:
            PacmanInstaller().install_packages(rootfs, ["parted", "sbctl"], NO_BASELINE)

        assert exc.value.family == "arch"
        assert exc.value.packages == ["parted", "sbctl"]

    def test_cache_clean_failure_is_tolerated(self, fake_run, rootfs):
        fake_run.on("pacman", "-Scc", returncode=1)

        PacmanInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)


class TestZypperInstaller:
    def test_commands(self, fake_run, rootfs):
        ZypperInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)

        assert fake_run.inner_calls() == [
            ["zypper", "--non-interactive", "refresh"],
            ["zypper", "--non-interactive", "--ignore-unknown", "install", "--no-recommends", "parted"],
            ["zypper", "clean", "--all"],
        ]


class TestApkInstaller:
    def test_commands(self, fake_run, rootfs):
        ApkInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)

        assert fake_run.inner_calls() == [["apk", "update"], ["apk", "add", "--no-cache", "parted"]]

    def test_transaction_is_atomic(self, fake_run, rootfs):
        fake_run.on("apk", "add", returncode=1, stderr="ERROR: unable to select packages")

        with pytest.raises(PackageInstallError):
            ApkInstaller().install_packages(rootfs, ["parted"], NO_BASELINE)


class TestEmergeInstaller:
    def test_one_package_at_a_time_and_failures_continue(self, fake_run, rootfs):
        (rootfs / "var/db/repos/gentoo").mkdir(parents=True)
        fake_run.on("emerge", "--ask=n", "--verbose", "--noreplace", "sys-boot/sbctl", returncode=1)

        report = EmergeInstaller().install_packages(
            rootfs, ["sys-block/parted", "sys-boot/sbctl", "sys-fs/xfsprogs"], NO_BASELINE
        )

        assert report.installed == ["sys-block/parted", "sys-fs/xfsprogs"]
        assert report.skipped == ["sys-boot/sbctl"]
        assert fake_run.inner_calls()[-1] == ["eclean-dist", "-d"]

    def test_tree_synced_when_missing(self, fake_run, rootfs):
        EmergeInstaller().install_packages(rootfs, ["sys-block/parted"], NO_BASELINE)

        assert fake_run.inner_calls()[0] == ["emerge-webrsync"]

    def test_binary_packages_when_features_allow(self, fake_run, rootfs):
        (rootfs / "usr/portage").mkdir(parents=True)
        fake_run.on("emerge", "--info", stdout='FEATURES="binpkg-logs getbinpkg sandbox"\n')

        EmergeInstaller().install_packages(rootfs, ["sys-block/parted"], NO_BASELINE)

        (install,) = [c for c in fake_run.inner_calls() if c[-1] == "sys-block/parted"]
        assert "--getbinpkg" in install
