"""
Tests for the installers, the installer registry, and the executor.

Installers are driven with a recording runner: commands are captured,
never executed.
"""

import io
import tarfile
from pathlib import Path

import pytest

from devbox.adapters import InstallerRegistry, InstallRequest
from devbox.adapters.mock import MockInstaller
from devbox.adapters.shell import (
    ArchiveInstaller,
    CommandInstaller,
    DotfileInstaller,
    FileInstaller,
    ScriptInstaller,
)
from devbox.adapters.system import AptPackagesInstaller
from devbox.adapters.terminal import TmuxClient, TmuxWorkspaceInstaller
from devbox.adapters.vcs import GitCloneInstaller
from devbox.core.errors import ElevationError, InstallError
from devbox.core.models.step import Step
from devbox.core.services.install import CommandRunner, InstallerExecutor, default_registry
from devbox.core.services.install.subprocess_runner import CommandResult

SHA = "sha256:" + "a" * 64


class RecordingRunner:
    """Stands in for CommandRunner; records every call."""

    def __init__(self, fail_on: dict | None = None, stdout: dict | None = None):
        self.calls: list[tuple[list[str], dict]] = []
        self.fail_on = fail_on or {}
        self.stdout = stdout or {}

    def run(self, argv, **kwargs):
        self.calls.append((list(argv), kwargs))
        key = " ".join(argv)
        for prefix, returncode in self.fail_on.items():
            if key.startswith(prefix):
                if kwargs.get("check", True):
                    raise InstallError(f"'{argv[0]}' exited with code {returncode}")
                return CommandResult(argv=argv, returncode=returncode)
        out = next((v for p, v in self.stdout.items() if key.startswith(p)), "")
        return CommandResult(argv=argv, returncode=0, stdout=out)

    @property
    def argvs(self) -> list[list[str]]:
        return [argv for argv, _ in self.calls]


@pytest.fixture
def runner():
    return RecordingRunner()


def make_request(ctx, runner, artifact=None, scratch=None, **step_fields) -> InstallRequest:
    data = {"name": "thing", "phase": 1, "presence": {"kind": "never"}}
    data.update(step_fields)
    return InstallRequest(
        step=Step.model_validate(data),
        ctx=ctx,
        runner=runner,
        artifact=artifact,
        scratch=scratch,
    )


@pytest.fixture
def scratch(tmp_path: Path) -> Path:
    path = tmp_path / "scratch-step"
    path.mkdir()
    return path


class TestInstallRequest:
    def test_render(self, ctx, runner, tmp_path: Path):
        request = make_request(
            ctx, runner, artifact=tmp_path / "a.sh", scratch=tmp_path,
            install={"mode": "command", "command": ["true"]},
        )
        assert request.render("~/.zshrc") == f"{ctx.home}/.zshrc"
        assert request.render("{home}/x") == f"{ctx.home}/x"
        assert request.render("{artifact}") == str(tmp_path / "a.sh")
        assert request.render("{scratch}/x") == f"{tmp_path}/x"
        assert request.render("{unknown}") == "{unknown}"
        assert request.render_all(["{user}", "a b"]) == ["dev", "a b"]

    def test_run_uses_step_privilege_and_timeout(self, ctx, runner):
        request = make_request(
            ctx, runner, needs_sudo=True, timeout=42,
            install={"mode": "command", "command": ["true"]},
        )
        request.run(["true"])
        _, kwargs = runner.calls[0]
        assert kwargs["privileged"] is True
        assert kwargs["timeout"] == 42


class TestAptPackages:
    def _request(self, ctx, runner, **install):
        spec = {"mode": "packages", "packages": ["ripgrep", "fd-find"]}
        spec.update(install)
        return make_request(ctx, runner, needs_sudo=True, install=spec)

    def test_install(self, ctx, runner):
        outcome = AptPackagesInstaller().install(self._request(ctx, runner, update=True))

        update, install = runner.calls
        assert update[0] == ["apt-get", "update", "-q"]
        assert install[0][:3] == ["apt-get", "install", "-y"]
        assert install[0][-2:] == ["ripgrep", "fd-find"]
        assert install[1]["env"]["DEBIAN_FRONTEND"] == "noninteractive"
        assert install[1]["privileged"] is True
        assert outcome.metadata["packages"] == ["ripgrep", "fd-find"]

    def test_optional_packages_skip_failures(self, ctx):
        runner = RecordingRunner(fail_on={"apt-get install -y -o Dpkg::Options::=--force-confdef -o Dpkg::Options::=--force-confold eza": 100})
        request = self._request(ctx, runner, optional_packages=["eza", "btop"])
        outcome = AptPackagesInstaller().install(request)
        assert outcome.metadata["optional_skipped"] == ["eza"]
        assert runner.argvs[-1][-1] == "btop"

    def test_required_failure_raises(self, ctx):
        runner = RecordingRunner(fail_on={"apt-get install": 100})
        with pytest.raises(InstallError):
            AptPackagesInstaller().install(self._request(ctx, runner))

    def test_validate_requires_sudo(self, ctx, runner):
        request = make_request(
            ctx, runner, install={"mode": "packages", "packages": ["ripgrep"]},
        )
        ok, error = AptPackagesInstaller().validate(request)
        assert not ok
        assert "needs_sudo" in error

    def test_validate_rejects_option_injection(self, ctx, runner):
        ok, _ = AptPackagesInstaller().validate(self._request(ctx, runner, packages=["--purge"]))
        assert not ok


class TestScript:
    def test_runs_artifact_with_interpreter(self, ctx, runner, scratch):
        artifact = scratch / "install.sh"
        artifact.write_text("echo hi\n")
        request = make_request(
            ctx, runner, artifact=artifact, scratch=scratch,
            fetch={"url": "https://bun.sh/install"},
            install={"mode": "script", "args": ["--prefix", "{home}/.bun"], "env": {"BUN_INSTALL": "~/.bun"}},
        )
        installer = ScriptInstaller()
        assert installer.validate(request) == (True, "")
        installer.install(request)

        argv, kwargs = runner.calls[0]
        assert argv == ["bash", str(artifact), "--prefix", f"{ctx.home}/.bun"]
        assert kwargs["env"] == {"BUN_INSTALL": f"{ctx.home}/.bun"}
        assert kwargs["cwd"] == str(scratch)
        assert kwargs["privileged"] is False

    def test_requires_artifact(self, ctx, runner):
        request = make_request(
            ctx, runner, fetch={"url": "https://bun.sh/install"}, install={"mode": "script"},
        )
        ok, error = ScriptInstaller().validate(request)
        assert not ok
        assert "artifact" in error


class TestCommand:
    def test_renders_each_element(self, ctx, runner):
        request = make_request(
            ctx, runner,
            install={"mode": "command", "command": ["{home}/.cargo/bin/cargo", "install", "ast-grep"]},
        )
        CommandInstaller().install(request)
        assert runner.argvs == [[f"{ctx.home}/.cargo/bin/cargo", "install", "ast-grep"]]

    def test_validate_cwd(self, ctx, runner):
        request = make_request(
            ctx, runner, install={"mode": "command", "command": ["true"], "cwd": "~/missing"},
        )
        ok, error = CommandInstaller().validate(request)
        assert not ok
        assert "missing" in error


class TestFile:
    def test_place_and_link(self, ctx, runner, scratch):
        artifact = scratch / "acfs"
        artifact.write_text("#!/bin/sh\n")
        request = make_request(
            ctx, runner, artifact=artifact, scratch=scratch,
            fetch={"url": "https://example.com/acfs"},
            install={"mode": "file", "dest": "~/.acfs/bin/acfs", "file_mode": "0755", "link": "~/.local/bin/acfs"},
        )
        FileInstaller().install(request)
        dest = f"{ctx.home}/.acfs/bin/acfs"
        assert runner.argvs == [
            ["install", "-D", "-m", "0755", str(artifact), dest],
            ["ln", "-sfn", dest, f"{ctx.home}/.local/bin/acfs"],
        ]


def _tarball(path: Path, files: dict[str, bytes]) -> Path:
    with tarfile.open(path, "w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


class TestArchive:
    def _request(self, ctx, runner, artifact, scratch, members):
        return make_request(
            ctx, runner, artifact=artifact, scratch=scratch, needs_sudo=True,
            fetch={"url": "https://example.com/lazygit.tar.gz", "digest": SHA},
            install={"mode": "archive", "members": members, "target_dir": "/usr/local/bin"},
        )

    def test_extracts_members(self, ctx, runner, scratch):
        artifact = _tarball(scratch / "lg.tar.gz", {
            "LICENSE": b"MIT",
            "lazygit_0.44.1/lazygit": b"\x7fELF",
        })
        outcome = ArchiveInstaller().install(self._request(ctx, runner, artifact, scratch, ["lazygit"]))

        extracted = scratch / "extract" / "lazygit_0.44.1" / "lazygit"
        assert extracted.read_bytes() == b"\x7fELF"
        argv, kwargs = runner.calls[0]
        assert argv == ["install", "-D", "-m", "0755", str(extracted), "/usr/local/bin/lazygit"]
        assert kwargs["privileged"] is True
        assert outcome.metadata["placed"] == ["/usr/local/bin/lazygit"]
        assert not (scratch / "extract" / "LICENSE").exists()

    def test_missing_member(self, ctx, runner, scratch):
        artifact = _tarball(scratch / "lg.tar.gz", {"README": b"hi"})
        with pytest.raises(InstallError, match="'lazygit' not found"):
            ArchiveInstaller().install(self._request(ctx, runner, artifact, scratch, ["lazygit"]))
        assert runner.calls == []

    def test_not_an_archive(self, ctx, runner, scratch):
        artifact = scratch / "lg.tar.gz"
        artifact.write_bytes(b"<html>rate limited</html>")
        with pytest.raises(InstallError, match="Cannot read archive"):
            ArchiveInstaller().install(self._request(ctx, runner, artifact, scratch, ["lazygit"]))


class TestDotfile:
    def _request(self, ctx, runner, scratch, **install):
        spec = {"mode": "dotfile", "dest": "~/.zshrc.local", "content": "export A={user}"}
        spec.update(install)
        return make_request(ctx, runner, scratch=scratch, install=spec)

    def _staged(self, runner) -> str:
        place = next(argv for argv in runner.argvs if argv[0] == "install")
        return Path(place[4]).read_text()

    def test_replace_new_file(self, ctx, runner, scratch):
        DotfileInstaller().install(self._request(ctx, runner, scratch))
        assert self._staged(runner) == "export A=dev\n"
        assert runner.argvs[0][3] == "0644"

    def test_replace_identical_is_noop(self, ctx, runner, scratch):
        (ctx.home / ".zshrc.local").write_text("export A=dev\n")
        outcome = DotfileInstaller().install(self._request(ctx, runner, scratch))
        assert outcome.changed is False
        assert runner.calls == []

    def test_replace_backs_up_existing(self, ctx, runner, scratch):
        target = ctx.home / ".zshrc.local"
        target.write_text("old\n")
        target.chmod(0o600)
        outcome = DotfileInstaller().install(self._request(ctx, runner, scratch))

        cp, place = runner.argvs
        assert cp[:3] == ["cp", "-p", str(target)]
        assert cp[3].startswith(f"{target}.bak.")
        assert place[3] == "0600"
        assert outcome.metadata["backup"] == cp[3]

    def test_append(self, ctx, runner, scratch):
        (ctx.home / ".zshrc.local").write_text("alias ll='ls -l'")
        DotfileInstaller().install(self._request(
            ctx, runner, scratch, strategy="append", marker="# devbox: agents",
        ))
        assert self._staged(runner) == "alias ll='ls -l'\n\n# devbox: agents\nexport A=dev\n"

    def test_append_marker_present_is_noop(self, ctx, runner, scratch):
        (ctx.home / ".zshrc.local").write_text("# devbox: agents\nexport A=dev\n")
        outcome = DotfileInstaller().install(self._request(
            ctx, runner, scratch, strategy="append", marker="# devbox: agents",
        ))
        assert outcome.changed is False
        assert runner.calls == []

    def test_non_utf8_file_is_refused(self, ctx, runner, scratch):
        (ctx.home / ".zshrc.local").write_bytes(b"export X=\xff\xfe\n")
        with pytest.raises(InstallError, match="not UTF-8") as exc_info:
            DotfileInstaller().install(self._request(
                ctx, runner, scratch, strategy="append", marker="# devbox: agents",
            ))
        assert ".zshrc.local" in exc_info.value.hint
        assert runner.calls == []


class TestGitClone:
    def _request(self, ctx, runner, dest="~/.oh-my-zsh", depth=1):
        return make_request(
            ctx, runner,
            install={"mode": "git_clone", "repo": "https://github.com/ohmyzsh/ohmyzsh.git", "dest": dest, "depth": depth},
        )

    def test_clone(self, ctx):
        runner = RecordingRunner(stdout={"git -C": "abc1234\n"})
        outcome = GitCloneInstaller().install(self._request(ctx, runner))

        clone, kwargs = runner.calls[0]
        assert clone == [
            "git", "clone", "--quiet", "--depth=1", "--",
            "https://github.com/ohmyzsh/ohmyzsh.git", f"{ctx.home}/.oh-my-zsh",
        ]
        assert kwargs["env"] == {"GIT_TERMINAL_PROMPT": "0"}
        assert outcome.metadata["head"] == "abc1234"

    def test_validate_non_empty_dest(self, ctx, runner):
        dest = ctx.home / ".oh-my-zsh"
        dest.mkdir()
        assert GitCloneInstaller().validate(self._request(ctx, runner))[0]
        (dest / "README").write_text("x")
        ok, error = GitCloneInstaller().validate(self._request(ctx, runner))
        assert not ok
        assert "not empty" in error

    def test_validate_file_dest(self, ctx, runner):
        (ctx.home / ".oh-my-zsh").write_text("x")
        assert not GitCloneInstaller().validate(self._request(ctx, runner))[0]


class TestTmuxWorkspace:
    def _request(self, ctx, runner, **install):
        spec = {
            "mode": "tmux_workspace",
            "session": "agents",
            "start_dir": "{workspace}",
            "windows": [{"name": "welcome", "keys": "cat ~/notes.txt"}, {"name": "claude"}],
        }
        spec.update(install)
        return make_request(ctx, runner, install=spec)

    def test_create(self, ctx):
        runner = RecordingRunner(fail_on={"tmux has-session": 1})
        outcome = TmuxWorkspaceInstaller().install(self._request(ctx, runner))
        ws = str(ctx.workspace)
        assert runner.argvs == [
            ["tmux", "has-session", "-t", "=agents"],
            ["tmux", "new-session", "-d", "-s", "agents", "-n", "welcome", "-c", ws],
            ["tmux", "new-window", "-t", "agents:", "-n", "claude", "-c", ws],
            ["tmux", "send-keys", "-t", "agents:welcome", "-l", f"cat {ctx.home}/notes.txt"],
            ["tmux", "send-keys", "-t", "agents:welcome", "Enter"],
            ["tmux", "select-window", "-t", "agents:welcome"],
        ]
        assert outcome.changed
        assert all(kw.get("privileged") is None for _, kw in runner.calls)

    def test_existing_session_is_noop(self, ctx, runner):
        outcome = TmuxWorkspaceInstaller().install(self._request(ctx, runner))
        assert outcome.changed is False
        assert len(runner.calls) == 1

    def test_validate(self, ctx, runner):
        installer = TmuxWorkspaceInstaller()
        dup = self._request(ctx, runner, windows=[{"name": "a"}, {"name": "a"}])
        assert not installer.validate(dup)[0]
        bad_select = self._request(ctx, runner, select="nope")
        assert not installer.validate(bad_select)[0]

    def test_client_factory(self, ctx, runner):
        clients = []

        def factory(r):
            client = TmuxClient(r, binary="/opt/tmux")
            clients.append(client)
            return client

        TmuxWorkspaceInstaller(client_factory=factory).install(self._request(ctx, runner))
        assert clients
        assert runner.argvs[0][0] == "/opt/tmux"


class TestInstallerRegistry:
    def test_dispatch_by_mode(self, ctx, runner):
        registry = InstallerRegistry()
        registry.register(CommandInstaller())
        request = make_request(ctx, runner, install={"mode": "command", "command": ["true"]})
        outcome = registry.install(request)
        assert outcome.installer == "command"
        assert outcome.step == "thing"
        assert outcome.duration_ms >= 0

    def test_missing_installer(self, ctx, runner):
        request = make_request(ctx, runner, install={"mode": "command", "command": ["true"]})
        with pytest.raises(InstallError, match="No installer"):
            InstallerRegistry().install(request)

    def test_validation_failure(self, ctx, runner):
        registry = default_registry()
        request = make_request(ctx, runner, install={"mode": "packages", "packages": ["rg"]})
        with pytest.raises(InstallError, match="Validation failed"):
            registry.install(request)

    def test_oserror_wrapped(self, ctx, runner):
        def _disk_full(request):
            raise OSError("disk full")

        mock = MockInstaller(on_install=_disk_full)
        request = make_request(ctx, runner, install={"mode": "command", "command": ["true"]})
        with pytest.raises(InstallError, match="disk full"):
            InstallerRegistry(mock_installer=mock).install(request)

    @pytest.mark.parametrize(
        "error",
        [
            UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte"),
            ValueError("bad value"),
            tarfile.ReadError("truncated"),
        ],
    )
    def test_value_and_archive_errors_wrapped(self, ctx, runner, error):
        def _fail(request):
            raise error

        mock = MockInstaller(on_install=_fail)
        request = make_request(ctx, runner, install={"mode": "command", "command": ["true"]})
        with pytest.raises(InstallError, match="command install failed") as exc_info:
            InstallerRegistry(mock_installer=mock).install(request)
        assert exc_info.value.__cause__ is error

    def test_provision_errors_propagate(self, ctx, runner):
        mock = MockInstaller()
        mock.set_failure("thing", ElevationError("no sudo"))
        request = make_request(ctx, runner, install={"mode": "command", "command": ["true"]})
        with pytest.raises(ElevationError):
            InstallerRegistry(mock_installer=mock).install(request)

    def test_mock_mode(self):
        registry = default_registry()
        assert not registry.mock_mode
        registry.set_mock(MockInstaller())
        assert registry.mock_mode

    def test_default_registry_covers_every_mode(self):
        assert sorted(default_registry().list_installers()) == sorted([
            "packages", "script", "archive", "file", "command",
            "git_clone", "dotfile", "tmux_workspace",
        ])

    def test_installer_status(self):
        status = default_registry().installer_status()
        assert status["packages"]["type"] == "AptPackagesInstaller"


class TestInstallerExecutor:
    def test_builds_request(self, ctx, step_factory):
        mock = MockInstaller()
        executor = InstallerExecutor(ctx, registry=InstallerRegistry(mock_installer=mock))
        executor.install(step_factory("ripgrep", binary="rg"), scratch=Path("/tmp/x"))

        request = mock.call_log[0]
        assert request.step.name == "ripgrep"
        assert request.scratch == Path("/tmp/x")
        assert request.runner is executor.runner
        assert isinstance(executor.runner, CommandRunner)

    def test_elevation_error_without_sudo(self, ctx, step_factory):
        executor = InstallerExecutor(ctx)
        with pytest.raises(ElevationError):
            executor.install(step_factory("ripgrep"))
