"""
Fetcher — secure download and integrity checking.

Downloads stream into a temp file next to the destination and are
renamed into place only once complete (and, when a digest is given,
verified). Nothing half-written or unverified is ever left at the
destination path.

Transport policy: https only. Plain-http URLs are refused before a
connection is attempted and any redirect to a non-https location
aborts the download.
"""

from __future__ import annotations

import hashlib
import logging
import os
import pwd
import shutil
import tempfile
import urllib.error
import urllib.request
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from urllib.parse import urlparse

from devbox import __version__
from devbox.core.context import SessionContext
from devbox.core.errors import FetchError, IntegrityError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_DEFAULT_ALGO = "sha256"


class _HttpsOnlyRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Refuse to follow a redirect that would leave https."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        if urlparse(newurl).scheme.lower() != "https":
            raise FetchError(
                f"Refusing redirect from {req.full_url} to non-https {newurl}",
                data={"url": req.full_url, "redirect": newurl},
            )
        return super().redirect_request(req, fp, code, msg, headers, newurl)


def build_https_opener() -> urllib.request.OpenerDirector:
    """URL opener whose redirects are constrained to https."""
    return urllib.request.build_opener(_HttpsOnlyRedirectHandler())


def parse_digest(expected: str) -> tuple[str, str]:
    """Split ``algo:hex`` into its parts. Bare hex means sha256."""
    if ":" in expected:
        algo, hexdigest = expected.split(":", 1)
    else:
        algo, hexdigest = _DEFAULT_ALGO, expected
    algo = algo.lower()
    if algo not in hashlib.algorithms_available:
        raise IntegrityError(f"Unsupported digest algorithm: {algo}")
    return algo, hexdigest.lower()


def file_digest(path: Path, algo: str = _DEFAULT_ALGO) -> str:
    """Hex digest of a file's contents."""
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_digest(path: Path, expected: str) -> bool:
    """Verify a file against ``algo:hex`` (sha256 when no prefix)."""
    algo, expected_hex = parse_digest(expected)
    return file_digest(path, algo) == expected_hex


def require_https(url: str) -> None:
    """Raise FetchError unless ``url`` is an https URL with a host."""
    parsed = urlparse(url)
    if parsed.scheme.lower() != "https" or not parsed.hostname:
        raise FetchError(
            f"Refusing non-https URL: {url}",
            hint="use an https:// URL in the catalog",
            data={"url": url},
        )


class Fetcher:
    """Retrieve remote artifacts into local scratch locations."""

    def __init__(
        self,
        ctx: SessionContext,
        *,
        timeout: int = 60,
        opener: urllib.request.OpenerDirector | None = None,
    ):
        self._ctx = ctx
        self._timeout = timeout
        self._opener = opener or build_https_opener()

    # ── Scratch space ───────────────────────────────────────────

    @contextmanager
    def scratch_dir(self, prefix: str = "devbox-") -> Iterator[Path]:
        """A caller-exclusive (0700) temp dir, removed on every exit path."""
        self._ctx.scratch_root.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=self._ctx.scratch_root))
        self._hand_over(path)
        logger.debug("Scratch dir created: %s", path)
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)
            logger.debug("Scratch dir removed: %s", path)

    # ── Downloads ───────────────────────────────────────────────

    def fetch(self, url: str, destination: Path) -> Path:
        """Download ``url`` to ``destination``.

        Raises:
            FetchError: Non-https URL or redirect, network failure,
                non-success HTTP status, or local write failure.
        """
        return self._download(url, destination, expected_digest=None)

    def fetch_verified(self, url: str, destination: Path, expected_digest: str) -> Path:
        """Download ``url`` and verify it against ``expected_digest``.

        Raises:
            IntegrityError: The downloaded bytes do not match. The
                destination is removed and nothing is left behind.
            FetchError: As for ``fetch``.
        """
        return self._download(url, destination, expected_digest=expected_digest)

    def _download(self, url: str, destination: Path, expected_digest: str | None) -> Path:
        require_https(url)

        algo, expected_hex = (
            parse_digest(expected_digest) if expected_digest else (_DEFAULT_ALGO, "")
        )
        hasher = hashlib.new(algo)

        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=".fetch_", suffix=".part")
        tmp = Path(tmp_name)
        size = 0
        try:
            req = urllib.request.Request(url, headers={"User-Agent": f"devbox/{__version__}"})
            logger.info("Downloading %s", url)
            with os.fdopen(fd, "wb") as out, self._opener.open(req, timeout=self._timeout) as resp:
                final_url = resp.geturl() if hasattr(resp, "geturl") else url
                require_https(final_url)
                while True:
                    chunk = resp.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    out.write(chunk)
                    hasher.update(chunk)
                    size += len(chunk)

            actual_hex = hasher.hexdigest()
            if expected_digest and actual_hex != expected_hex:
                destination.unlink(missing_ok=True)
                raise IntegrityError(
                    f"{algo} mismatch for {url}: expected {expected_hex}, got {actual_hex}",
                    data={"url": url, "expected": expected_hex, "actual": actual_hex},
                )

            os.replace(tmp, destination)
        except FetchError:
            tmp.unlink(missing_ok=True)
            raise
        except urllib.error.HTTPError as e:
            tmp.unlink(missing_ok=True)
            raise FetchError(f"HTTP {e.code} fetching {url}", data={"url": url, "status": e.code}) from e
        except (urllib.error.URLError, TimeoutError) as e:
            tmp.unlink(missing_ok=True)
            raise FetchError(f"Cannot fetch {url}: {e}", data={"url": url}) from e
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise FetchError(f"Cannot write {destination}: {e}", data={"url": url}) from e

        self._hand_over(destination)
        logger.info(
            "Fetched %s → %s (%d bytes%s)",
            url, destination, size, ", verified" if expected_digest else "",
        )
        return destination

    def _hand_over(self, path: Path) -> None:
        """Give scratch files to the target user when running as root.

        Unprivileged steps are executed as the target user, who must be
        able to read what root downloaded on their behalf.
        """
        if not self._ctx.is_root or self._ctx.target_user == "root":
            return
        try:
            entry = pwd.getpwnam(self._ctx.target_user)
        except KeyError:
            return
        os.chown(path, entry.pw_uid, entry.pw_gid)
