"""
Tests for domain models — Step, PresenceCheck, InstallSpec, RunRecord, Ledger.
"""

import pytest
from pydantic import ValidationError

from devbox.core.models.ledger import Ledger, RunRecord
from devbox.core.models.step import FETCHING_MODES, InstallSpec, PresenceCheck, Step


def _step(**overrides) -> dict:
    data = {
        "name": "ripgrep",
        "phase": 1,
        "presence": {"kind": "binary", "name": "rg"},
        "install": {"mode": "packages", "packages": ["ripgrep"]},
        "needs_sudo": True,
    }
    data.update(overrides)
    return data


class TestStep:
    def test_minimal(self):
        step = Step.model_validate(_step())
        assert step.name == "ripgrep"
        assert step.fatality == "continue"
        assert step.timeout == 900
        assert step.fetch is None

    def test_label_prefers_description(self):
        assert Step.model_validate(_step(description="ripgrep (rg)")).label == "ripgrep (rg)"
        assert Step.model_validate(_step()).label == "ripgrep"

    @pytest.mark.parametrize("name", ["Ripgrep", "-rg", "rip grep", "", "rg/1"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationError):
            Step.model_validate(_step(name=name))

    def test_phase_must_be_positive(self):
        with pytest.raises(ValidationError):
            Step.model_validate(_step(phase=0))

    def test_invalid_fatality(self):
        with pytest.raises(ValidationError):
            Step.model_validate(_step(fatality="ignore"))

    def test_fetching_mode_requires_fetch(self):
        with pytest.raises(ValidationError, match="requires a fetch url"):
            Step.model_validate(_step(install={"mode": "script"}, needs_sudo=False))

    def test_non_fetching_mode_rejects_fetch(self):
        with pytest.raises(ValidationError, match="does not consume"):
            Step.model_validate(_step(fetch={"url": "https://example.com/x"}))

    def test_sudo_fetch_requires_digest(self):
        data = _step(
            fetch={"url": "https://example.com/lazygit.tar.gz"},
            install={"mode": "archive", "members": ["lazygit"], "target_dir": "/usr/local/bin"},
        )
        with pytest.raises(ValidationError, match="must declare a digest"):
            Step.model_validate(data)

        data["fetch"]["digest"] = "sha256:" + "a" * 64
        assert Step.model_validate(data).fetch.digest.startswith("sha256:")

    def test_unprivileged_fetch_may_omit_digest(self):
        step = Step.model_validate(
            _step(
                needs_sudo=False,
                fetch={"url": "https://bun.sh/install"},
                install={"mode": "script"},
            )
        )
        assert step.fetch.digest is None

    def test_fetch_must_be_https(self):
        with pytest.raises(ValidationError, match="https"):
            Step.model_validate(
                _step(
                    needs_sudo=False,
                    fetch={"url": "http://example.com/install.sh"},
                    install={"mode": "script"},
                )
            )

    def test_digest_format(self):
        with pytest.raises(ValidationError, match="digest"):
            Step.model_validate(
                _step(
                    needs_sudo=False,
                    fetch={"url": "https://example.com/i.sh", "digest": "not-a-digest"},
                    install={"mode": "script"},
                )
            )

    def test_fetching_modes(self):
        assert FETCHING_MODES == {"script", "archive", "file"}


class TestPresenceCheck:
    @pytest.mark.parametrize(
        "data",
        [
            {"kind": "binary"},
            {"kind": "path"},
            {"kind": "file_contains", "path": "~/.zshrc"},
            {"kind": "tmux_session"},
            {"kind": "all"},
        ],
    )
    def test_required_fields(self, data):
        with pytest.raises(ValidationError, match="requires"):
            PresenceCheck.model_validate(data)

    def test_invalid_regex(self):
        with pytest.raises(ValidationError):
            PresenceCheck.model_validate({"kind": "file_contains", "path": "/x", "pattern": "("})

    def test_describe(self):
        check = PresenceCheck.model_validate(
            {
                "kind": "all",
                "checks": [
                    {"kind": "binary", "name": "rg"},
                    {"kind": "path", "path": "~/.bun/bin/bun"},
                ],
            }
        )
        assert check.describe() == "binary rg and path ~/.bun/bin/bun"
        assert PresenceCheck(kind="never").describe() == "never satisfied"


class TestInstallSpec:
    def test_archive_requires_members_and_target(self):
        with pytest.raises(ValidationError, match="members"):
            InstallSpec.model_validate({"mode": "archive", "target_dir": "/usr/local/bin"})

    def test_append_requires_marker(self):
        with pytest.raises(ValidationError, match="marker"):
            InstallSpec.model_validate(
                {"mode": "dotfile", "dest": "~/.profile", "content": "x", "strategy": "append"}
            )

    def test_git_clone_requires_https(self):
        with pytest.raises(ValidationError, match="https"):
            InstallSpec.model_validate(
                {"mode": "git_clone", "repo": "git@github.com:x/y.git", "dest": "/tmp/y"}
            )

    def test_mode_bits(self):
        assert InstallSpec(mode="file", dest="/x", file_mode="0755").mode_bits() == 0o755
        assert InstallSpec(mode="file", dest="/x").mode_bits() == 0o644
        assert InstallSpec(mode="file", dest="/x").mode_bits(0o700) == 0o700

    def test_invalid_file_mode(self):
        with pytest.raises(ValidationError, match="octal"):
            InstallSpec(mode="file", dest="/x", file_mode="rwx")

    def test_tmux_requires_windows(self):
        with pytest.raises(ValidationError, match="windows"):
            InstallSpec.model_validate({"mode": "tmux_workspace", "session": "agents"})


class TestRunRecord:
    def test_success(self):
        r = RunRecord.success("rg", version="14.1.0", phase=4)
        assert r.outcome == "succeeded"
        assert r.ok
        assert not r.failed
        assert r.version == "14.1.0"

    def test_skip(self):
        r = RunRecord.skip("rg")
        assert r.outcome == "skipped"
        assert r.ok

    def test_failure(self):
        r = RunRecord.failure("rg", "InstallError", "apt-get exited with code 100", hint="retry")
        assert r.failed
        assert not r.ok
        assert r.error_kind == "InstallError"
        assert r.hint == "retry"

    def test_timestamp_is_iso(self):
        r = RunRecord.success("rg")
        assert "T" in r.timestamp


class TestLedger:
    def test_put_replaces(self):
        ledger = Ledger()
        ledger.put(RunRecord.failure("rg", "InstallError", "boom"))
        ledger.put(RunRecord.success("rg"))
        assert ledger.outcomes() == {"rg": "succeeded"}
        assert ledger.get("rg").ok
        assert ledger.get("missing") is None

    def test_defaults(self):
        ledger = Ledger()
        assert ledger.schema_version == 1
        assert ledger.records == {}
        assert ledger.last_exit_code is None
