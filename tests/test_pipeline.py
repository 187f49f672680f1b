"""Tests for step sequencing, the state machine and cleanup."""

import pytest

from penguins_recovery.config import AdapterConfig
from penguins_recovery.context import AdapterCtx, AdapterInvocation, AdapterState, GuiProfile
from penguins_recovery.errors import ExtractionError
from penguins_recovery.pipeline import cleanup, run_pipeline
from penguins_recovery.steps import InstallGuiStep, SecureBootChainStep


class StubStep:
    def __init__(self, step_id, reaches, *, enabled=True, fail=None, log=None):
        self.step_id = step_id
        self.reaches = reaches
        self._enabled = enabled
        self._fail = fail
        self._log = log if log is not None else []

    def enabled(self, ctx):
        return self._enabled

    def run(self, ctx):
        self._log.append((self.step_id, ctx.state))
        if self._fail is not None:
            raise self._fail


@pytest.fixture
def make_ctx(tmp_path, make_caps):
    def _make(**kw):
        work = tmp_path / "work"
        (work / "rootfs").mkdir(parents=True, exist_ok=True)
        inv = AdapterInvocation(
            input=str(tmp_path / "in.iso"),
            output=tmp_path / "out.iso",
            work_dir=work,
            **kw,
        )
        return AdapterCtx(invocation=inv, config=AdapterConfig(), caps=make_caps())

    return _make


def _steps(log, **overrides):
    spec = [
        ("10_extract_iso", AdapterState.EXTRACTED),
        ("20_detect_family", AdapterState.FAMILY_DETECTED),
        ("50_install_gui", AdapterState.GUI_INSTALLED),
        ("70_repack_iso", AdapterState.REPACKED),
    ]
    return [StubStep(sid, st, log=log, **overrides.get(sid, {})) for sid, st in spec]


class TestRunPipeline:
    """Tests for run_pipeline()."""

    def test_states_advance_in_order(self, fake_run, make_ctx):
        ctx = make_ctx()
        log = []

        result = run_pipeline(ctx, _steps(log))

        assert [state for _, state in log] == [
            AdapterState.INIT,
            AdapterState.EXTRACTED,
            AdapterState.FAMILY_DETECTED,
            AdapterState.GUI_INSTALLED,
        ]
        assert result.state is AdapterState.DONE
        assert ctx.state is AdapterState.DONE

    def test_disabled_step_is_skipped_not_run(self, fake_run, make_ctx):
        ctx = make_ctx()
        log = []

        result = run_pipeline(ctx, _steps(log, **{"50_install_gui": {"enabled": False}}))

        assert "50_install_gui" not in [sid for sid, _ in log]
        assert result.skipped_steps == ["50_install_gui"]
        # Repack runs straight after family detection.
        assert log[-1] == ("70_repack_iso", AdapterState.FAMILY_DETECTED)

    def test_failure_moves_to_failed_and_cleans_up(self, fake_run, make_ctx):
        ctx = make_ctx()
        log = []

        with pytest.raises(ExtractionError):
            run_pipeline(ctx, _steps(log, **{"20_detect_family": {"fail": ExtractionError("no os-release")}}))

        assert ctx.state is AdapterState.FAILED
        assert [sid for sid, _ in log] == ["10_extract_iso", "20_detect_family"]
        assert not ctx.work_dir.exists()
        assert fake_run.ran("umount", "-l", str(ctx.rootfs / "dev"))

    def test_keep_work_preserves_directory_on_failure(self, fake_run, make_ctx):
        ctx = make_ctx(keep_work=True)

        with pytest.raises(RuntimeError):
            run_pipeline(ctx, [StubStep("10_extract_iso", AdapterState.EXTRACTED, fail=RuntimeError("x"))])

        assert ctx.work_dir.is_dir()
        assert ctx.state is AdapterState.FAILED

    def test_success_removes_work_dir(self, fake_run, make_ctx):
        ctx = make_ctx()

        run_pipeline(ctx, _steps([]))

        assert not ctx.work_dir.exists()


class TestCleanup:
    def test_never_removes_work_dir_with_active_mounts(self, fake_run, make_ctx, monkeypatch):
        ctx = make_ctx()
        stuck = str(ctx.rootfs / "proc")
        monkeypatch.setattr("penguins_recovery.pipeline.active_mounts_under", lambda path: [stuck])

        assert cleanup(ctx) is False
        assert ctx.work_dir.is_dir()
        assert fake_run.ran("umount", "-l", stuck)

    def test_removal_error_is_logged_not_raised(self, fake_run, make_ctx, monkeypatch, caplog):
        ctx = make_ctx()

        def _busy(path):
            raise OSError(16, "Device or resource busy", str(path))

        monkeypatch.setattr("penguins_recovery.pipeline.shutil.rmtree", _busy)

        result = run_pipeline(ctx, _steps([]))

        assert result.state is AdapterState.DONE
        assert ctx.work_dir.is_dir()
        assert "Could not remove work directory" in caplog.text

    def test_releases_iso_and_efi_mounts(self, fake_run, make_ctx):
        ctx = make_ctx()
        ctx.iso_mnt.mkdir()
        ctx.efi_mnt.mkdir()

        assert cleanup(ctx) is True
        assert fake_run.ran("umount", "-l", str(ctx.iso_mnt))
        assert fake_run.ran("umount", "-l", str(ctx.efi_mnt))


class TestOptionalSteps:
    """Which optional steps are enabled by the invocation."""

    def test_gui_none_skips_gui_step(self, make_ctx):
        assert not InstallGuiStep().enabled(make_ctx())
        assert InstallGuiStep().enabled(make_ctx(gui_profile=GuiProfile.MINIMAL))

    def test_secureboot_step_only_on_request(self, make_ctx):
        assert not SecureBootChainStep().enabled(make_ctx())
        assert SecureBootChainStep().enabled(make_ctx(secureboot=True))
