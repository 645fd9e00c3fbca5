"""
Script installer — run a fetched installer script.

The script is never piped into a shell: it is downloaded to the scratch
dir first (and digest-checked when the catalog pins one), then handed
to an explicit interpreter as a file argument.

Action fields:
    interpreter (str): ``bash`` or ``sh``.
    args (list[str]): Arguments after the script path, each rendered on its own.
    env (dict[str, str]): Extra environment for the installer.
"""

from __future__ import annotations

import shutil

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest


class ScriptInstaller(Installer):
    """Run a fetched script with a fixed interpreter."""

    @property
    def name(self) -> str:
        return "script"

    def is_available(self) -> bool:
        return shutil.which("bash") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        if request.artifact is None or not request.artifact.is_file():
            return False, "script mode needs a fetched artifact"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        argv = [spec.interpreter, str(request.artifact), *request.render_all(spec.args)]
        env = {k: request.render(v) for k, v in spec.env.items()}

        result = request.run(argv, env=env or None, cwd=str(request.scratch) if request.scratch else None)
        return self.outcome(
            request,
            result.stdout.strip(),
            metadata={"interpreter": spec.interpreter, "args": argv[2:]},
        )
