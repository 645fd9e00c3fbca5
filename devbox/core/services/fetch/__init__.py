"""
Fetcher — re-exports.

    from devbox.core.services.fetch import Fetcher

    fetcher = Fetcher(ctx)
    with fetcher.scratch_dir() as scratch:
        path = fetcher.fetch_verified(url, scratch / "tool.tar.gz", "sha256:...")
"""

from devbox.core.services.fetch.download import (  # noqa: F401
    Fetcher,
    build_https_opener,
    file_digest,
    parse_digest,
    require_https,
    verify_digest,
)
