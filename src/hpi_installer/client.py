from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from .config import (
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY_S,
    DEFAULT_RETRY_MAX_TIME_S,
    DEFAULT_TIMEOUT_S,
    Config,
)

logger = logging.getLogger(__name__)

# Statuses worth another attempt; everything else >= 400 is final.
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class InstallerError(RuntimeError):
    pass


class MalformedSpecError(InstallerError):
    pass


class DownloadError(InstallerError):
    pass


class IntegrityError(InstallerError):
    pass


class ManifestError(IntegrityError):
    pass


@dataclass(frozen=True)
class InstallerHTTPError(InstallerError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body[:200]}"


class UpdateCenterClient:
    """
    Thin httpx wrapper used to talk to update centers and artifact mirrors.

    A single instance is shared by every install task of a run; httpx.Client is thread-safe.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retries: int = DEFAULT_RETRIES,
        retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
        retry_max_time_s: float = DEFAULT_RETRY_MAX_TIME_S,
        default_headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_s = timeout_s
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self.retry_max_time_s = retry_max_time_s
        self._sleep = sleep
        self._clock = clock

        self._http = httpx.Client(
            # Like curl --connect-timeout: bounds connecting only, not transfers of large archives.
            timeout=httpx.Timeout(None, connect=timeout_s),
            follow_redirects=True,
            headers=dict(default_headers or {}),
            limits=httpx.Limits(max_connections=None, max_keepalive_connections=20),
            transport=transport,
        )

    @classmethod
    def from_config(cls, cfg: Config, **kwargs: Any) -> "UpdateCenterClient":
        return cls(
            timeout_s=cfg.timeout_s,
            retries=cfg.retries,
            retry_delay_s=cfg.retry_delay_s,
            retry_max_time_s=cfg.retry_max_time_s,
            **kwargs,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "UpdateCenterClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def effective_url(self, url: str, *, params: dict[str, Any] | None = None) -> str | None:
        """Follow redirects for ``url`` and return where they end, without reading the body."""
        try:
            with self._http.stream("GET", url, params=params) as resp:
                if resp.status_code >= 400:
                    logger.debug("GET %s returned HTTP %s", url, resp.status_code)
                    return None
                return str(resp.url)
        except httpx.HTTPError as e:
            logger.debug("GET %s failed: %s", url, e)
            return None

    def download(self, url: str, dest: Path) -> Path:
        started = self._clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                self._fetch_once(url, dest)
                return dest
            except InstallerHTTPError as e:
                if e.status_code not in RETRYABLE_STATUS_CODES:
                    raise DownloadError(f"Failed to download {url}: HTTP {e.status_code}") from e
                last_error = f"HTTP {e.status_code}"
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            except OSError as e:
                raise DownloadError(f"Could not write {dest}: {e}") from e

            if attempt > self.retries:
                raise DownloadError(f"Failed to download {url} after {attempt} attempts: {last_error}")
            elapsed = self._clock() - started
            if elapsed + self.retry_delay_s > self.retry_max_time_s:
                raise DownloadError(
                    f"Failed to download {url}: gave up after {elapsed:.1f}s ({attempt} attempts): {last_error}"
                )
            logger.warning(
                "Transient error downloading %s (attempt %d of %d): %s",
                url,
                attempt,
                self.retries + 1,
                last_error,
            )
            if self.retry_delay_s > 0:
                self._sleep(self.retry_delay_s)

    def _fetch_once(self, url: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".part")
        failed: InstallerHTTPError | None = None
        try:
            with self._http.stream("GET", url) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    failed = InstallerHTTPError(resp.status_code, resp.text)
                else:
                    with tmp.open("wb") as out:
                        for chunk in resp.iter_bytes():
                            out.write(chunk)
            # Raised after the stream closes: its exit would assign __traceback__ to a frozen instance.
            if failed is not None:
                raise failed
            tmp.replace(dest)
        finally:
            tmp.unlink(missing_ok=True)
