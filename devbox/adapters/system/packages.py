"""
System package installer — apt-get, non-interactively.

Action fields:
    packages (list[str]): Installed in one transaction. Any failure fails the step.
    optional_packages (list[str]): Attempted one by one afterwards; a
        package that is unavailable on this release is logged and skipped.
    update (bool): Run ``apt-get update`` first.
"""

from __future__ import annotations

import logging
import shutil

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest
from devbox.core.errors import InstallError

logger = logging.getLogger(__name__)

# Keeps apt, debconf and needrestart from stopping to ask questions.
APT_ENV = {
    "DEBIAN_FRONTEND": "noninteractive",
    "NEEDRESTART_MODE": "a",
    "NEEDRESTART_SUSPEND": "1",
    "DEBCONF_NONINTERACTIVE_SEEN": "true",
}

_APT_OPTS = ["-y", "-o", "Dpkg::Options::=--force-confdef", "-o", "Dpkg::Options::=--force-confold"]


class AptPackagesInstaller(Installer):
    """Install system packages by name."""

    @property
    def name(self) -> str:
        return "packages"

    def is_available(self) -> bool:
        return shutil.which("apt-get") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        if not request.privileged:
            return False, "system packages require needs_sudo: true"
        for pkg in [*request.spec.packages, *request.spec.optional_packages]:
            if pkg.startswith("-"):
                return False, f"Invalid package name: {pkg!r}"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        packages = request.render_all(spec.packages)

        if spec.update:
            request.run(["apt-get", "update", "-q"], env=APT_ENV)

        result = request.run(["apt-get", "install", *_APT_OPTS, *packages], env=APT_ENV)

        skipped: list[str] = []
        for pkg in request.render_all(spec.optional_packages):
            try:
                request.run(["apt-get", "install", *_APT_OPTS, pkg], env=APT_ENV)
            except InstallError as e:
                logger.warning("Optional package %s not installed: %s", pkg, e.message)
                skipped.append(pkg)

        return self.outcome(
            request,
            result.stdout.strip().splitlines()[-1] if result.stdout.strip() else "",
            metadata={"packages": packages, "optional_skipped": skipped},
        )
