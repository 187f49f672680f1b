"""Tests for the YAML config and the invocation record."""

from pathlib import Path

import pytest

from penguins_recovery.config import (
    DEFAULT_SQUASHFS_OPTIONS,
    DEFAULT_WORK_DIR,
    AdapterConfig,
    load_config,
    repo_root,
)
from penguins_recovery.context import (
    AdapterInvocation,
    GuiProfile,
    default_output_for,
    is_remote,
)
from penguins_recovery.errors import UsageError


class TestAdapterConfig:
    def test_defaults(self):
        cfg = AdapterConfig()

        assert cfg.work_dir == DEFAULT_WORK_DIR
        assert cfg.recovery_root == repo_root()
        assert cfg.volume_id == "PENGUINS_RECOVERY"
        assert cfg.hostname == "penguins-recovery"
        assert cfg.squashfs_options == DEFAULT_SQUASHFS_OPTIONS
        assert cfg.command_timeout_s == 14400
        assert cfg.log_path is None

    def test_load_yaml(self, tmp_path):
        p = tmp_path / "adapter.yaml"
        p.write_text(
            "paths:\n  work_dir: /srv/work\n  recovery_root: /srv/recovery\n"
            "iso:\n  volume_id: RESCUE\n"
            "squashfs:\n  options: [-comp, zstd]\n"
            "command_timeout_s: 0\n"
        )

        cfg = load_config(str(p))

        assert cfg.work_dir == "/srv/work"
        assert cfg.recovery_root == Path("/srv/recovery")
        assert cfg.volume_id == "RESCUE"
        assert cfg.squashfs_options == ["-comp", "zstd"]
        assert cfg.command_timeout_s is None

    def test_no_path_means_defaults(self):
        assert load_config(None).raw == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(UsageError, match="not found"):
            load_config(str(tmp_path / "nope.yaml"))

    def test_not_yaml(self, tmp_path):
        p = tmp_path / "adapter.toml"
        p.write_text("x = 1\n")

        with pytest.raises(UsageError):
            load_config(str(p))

    def test_not_a_mapping(self, tmp_path):
        p = tmp_path / "adapter.yaml"
        p.write_text("- a\n- b\n")

        with pytest.raises(UsageError, match="mapping"):
            load_config(str(p))


class TestDefaultOutput:
    def test_local_path(self, tmp_path):
        assert default_output_for("/isos/debian-live.iso", cwd=str(tmp_path)) == tmp_path / "recovery-debian-live.iso"

    def test_url(self, tmp_path):
        out = default_output_for("https://example.org/pub/arch.iso?x=1", cwd=str(tmp_path))

        assert out == tmp_path / "recovery-arch.iso"

    def test_is_remote(self):
        assert is_remote("http://a/b.iso")
        assert not is_remote("/tmp/http.iso")


class TestAdapterInvocation:
    """validate() runs once, before anything destructive."""

    def _inv(self, tmp_path, **kw):
        iso = tmp_path / "in.iso"
        iso.write_bytes(b"iso")
        base = dict(input=str(iso), output=tmp_path / "out.iso", work_dir=tmp_path / "work")
        base.update(kw)
        return AdapterInvocation(**base)

    def test_valid(self, tmp_path):
        inv = self._inv(tmp_path)

        inv.validate()
        assert not inv.wants_gui
        assert not inv.input_is_remote

    def test_missing_input_file(self, tmp_path):
        with pytest.raises(UsageError, match="not found"):
            self._inv(tmp_path, input=str(tmp_path / "missing.iso")).validate()

    def test_remote_input_not_checked_locally(self, tmp_path):
        self._inv(tmp_path, input="https://example.org/x.iso").validate()

    def test_output_inside_work_dir(self, tmp_path):
        with pytest.raises(UsageError, match="work-dir"):
            self._inv(tmp_path, output=tmp_path / "work" / "out.iso").validate()

    def test_missing_sb_key_dir(self, tmp_path):
        with pytest.raises(UsageError, match="Secure Boot key directory"):
            self._inv(tmp_path, sb_key_dir=tmp_path / "keys").validate()

    def test_wants_gui(self, tmp_path):
        assert self._inv(tmp_path, gui_profile=GuiProfile.TOUCH).wants_gui

    def test_frozen(self, tmp_path):
        inv = self._inv(tmp_path)

        with pytest.raises(Exception):
            inv.keep_work = True
