"""Detection — live presence predicates and installed versions."""

from devbox.core.services.detection.presence import evaluate, installed_version

__all__ = ["evaluate", "installed_version"]
