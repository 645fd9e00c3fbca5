"""devbox — idempotent developer-box provisioning."""

__version__ = "0.1.0"
