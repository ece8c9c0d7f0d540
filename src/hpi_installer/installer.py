from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Sequence

from .archive import ManifestDependency, check_integrity, plugin_version, read_dependencies
from .channels import ChannelResolver, discover_version_channel
from .client import DownloadError, IntegrityError, ManifestError, UpdateCenterClient
from .config import Config
from .inventory import (
    ARCHIVE_SUFFIX,
    DirectoryInventory,
    Inventory,
    InventoryEntry,
    StaticInventory,
    WarBundledInventory,
    snapshot,
    war_server_version,
)
from .plugin_spec import PluginRequest, VersionKind
from .versions import compare_versions, version_at_least

logger = logging.getLogger(__name__)

FAILED_REPORT_FILENAME = "failed-plugins.txt"
PLUGIN_SUFFIX = "-plugin"

DOWNLOAD_FAILURE = "download failure"
INTEGRITY_FAILURE = "integrity failure"
ALREADY_SATISFIED = "already satisfied"

_REPORT_PREFIX = {
    DOWNLOAD_FAILURE: "Not downloaded",
    INTEGRITY_FAILURE: "Download integrity",
}


class InstallStatus(str, Enum):
    INSTALLED = "installed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallResult:
    plugin_id: str
    status: InstallStatus
    reason: str | None = None
    version: str | None = None
    archive: Path | None = None
    fetched: bool = False


@dataclass(frozen=True)
class PluginFailure:
    plugin_id: str
    reason: str
    detail: str = ""


@dataclass(frozen=True)
class InstallReport:
    installed: tuple[InstallResult, ...]
    skipped: tuple[InstallResult, ...]
    failures: tuple[PluginFailure, ...]
    bundled: tuple[InventoryEntry, ...]
    preinstalled: tuple[InventoryEntry, ...]
    version_channel: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def fetched(self) -> tuple[str, ...]:
        return tuple(r.plugin_id for r in self.installed if r.fetched)

    def error_message(self) -> str:
        lines = [f"{f.plugin_id}: {f.reason}" for f in self.failures]
        return "Some plugins failed to download! " + "; ".join(lines)


class LockRegistry:
    """
    In-run claims on plugin ids.

    ``acquire`` is an atomic test-and-create: exactly one caller gets True for a given id.
    Claims are never released while a run is in progress.
    """

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._held: set[str] = set()

    def acquire(self, plugin_id: str) -> bool:
        with self._mutex:
            if plugin_id in self._held:
                return False
            self._held.add(plugin_id)
            return True

    def seed(self, plugin_ids: Iterable[str]) -> None:
        for plugin_id in plugin_ids:
            self.acquire(plugin_id)

    def clear(self) -> None:
        with self._mutex:
            self._held.clear()

    def held(self) -> frozenset[str]:
        with self._mutex:
            return frozenset(self._held)

    def __contains__(self, plugin_id: object) -> bool:
        with self._mutex:
            return plugin_id in self._held


class FailureTracker:
    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._failures: list[PluginFailure] = []

    def record(self, plugin_id: str, reason: str, detail: str = "") -> None:
        with self._mutex:
            self._failures.append(PluginFailure(plugin_id=plugin_id, reason=reason, detail=detail))

    def failures(self) -> tuple[PluginFailure, ...]:
        with self._mutex:
            return tuple(self._failures)

    def clear(self) -> None:
        with self._mutex:
            self._failures.clear()

    def write_report(self, path: Path) -> None:
        lines = [f"{_REPORT_PREFIX.get(f.reason, f.reason)}: {f.plugin_id}" for f in self.failures()]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _dedupe_requests(requests: Sequence[PluginRequest]) -> list[PluginRequest]:
    chosen: dict[str, PluginRequest] = {}
    for req in requests:
        current = chosen.get(req.plugin_id)
        if current is None:
            chosen[req.plugin_id] = req
            continue
        keep = current
        if (
            current.version_spec.kind == VersionKind.EXACT
            and req.version_spec.kind == VersionKind.EXACT
            and compare_versions(req.version_spec.version or "", current.version_spec.version or "") > 0
        ):
            keep = req
        logger.warning("Plugin %s requested more than once (%s, %s); using %s", req.plugin_id, current, req, keep)
        chosen[req.plugin_id] = keep
    return list(chosen.values())


class PluginInstaller:
    def __init__(
        self,
        *,
        plugins_dir: Path,
        client: UpdateCenterClient,
        channels: ChannelResolver,
        bundled: Inventory | None = None,
        installed: Inventory | None = None,
        update_center_url: str | None = None,
        server_version: str | None = None,
    ) -> None:
        self.plugins_dir = Path(plugins_dir)
        self.client = client
        self.channels = channels
        self.bundled = bundled if bundled is not None else StaticInventory()
        self.installed = installed if installed is not None else DirectoryInventory(self.plugins_dir)
        self.update_center_url = update_center_url
        self.server_version = server_version

        self.locks = LockRegistry()
        self.failures = FailureTracker()
        self._results: dict[str, InstallResult] = {}
        self._results_mutex = threading.Lock()
        self._available: dict[str, str] = {}
        self._active_channels = channels

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        client: UpdateCenterClient,
        *,
        bundled: Inventory | None = None,
        installed: Inventory | None = None,
    ) -> "PluginInstaller":
        plugins_dir = Path(cfg.plugins_dir).expanduser()
        war_path = Path(cfg.war_path).expanduser()
        return cls(
            plugins_dir=plugins_dir,
            client=client,
            channels=ChannelResolver.from_config(cfg),
            bundled=bundled if bundled is not None else WarBundledInventory(war_path),
            installed=installed,
            update_center_url=cfg.update_center_url,
            server_version=war_server_version(war_path),
        )

    @property
    def failed_report_path(self) -> Path:
        return self.plugins_dir / FAILED_REPORT_FILENAME

    def archive_path(self, plugin_id: str) -> Path:
        return self.plugins_dir / f"{plugin_id}{ARCHIVE_SUFFIX}"

    def run(self, requests: Sequence[PluginRequest]) -> InstallReport:
        self.plugins_dir.mkdir(parents=True, exist_ok=True)
        self.failed_report_path.unlink(missing_ok=True)
        self.locks.clear()
        self.failures.clear()
        with self._results_mutex:
            self._results = {}

        work = _dedupe_requests(requests)

        # Explicit requests claim their ids before any dependency can, so their version wins.
        logger.info("Creating initial locks...")
        self.locks.seed(req.plugin_id for req in work)

        logger.info("Registering bundled and preinstalled plugins...")
        bundled = tuple(self.bundled.list())
        preinstalled = tuple(self.installed.list())
        self._available = snapshot(StaticInventory(bundled), StaticInventory(preinstalled))

        version_channel = self.channels.version_channel
        if version_channel is None and self.update_center_url:
            version_channel = discover_version_channel(self.client, self.update_center_url, self.server_version)
            if version_channel:
                logger.info("Using version-specific update center: %s", version_channel)
        self._active_channels = self.channels.with_version_channel(version_channel)

        logger.info("Downloading plugins...")
        try:
            self._spawn_and_join(work, self._install)
        finally:
            self.locks.clear()

        failures = self.failures.failures()
        if failures:
            self.failures.write_report(self.failed_report_path)
            logger.error("Some plugins failed to download! %s", ", ".join(f.plugin_id for f in failures))

        with self._results_mutex:
            results = sorted(self._results.values(), key=lambda r: r.plugin_id)
        return InstallReport(
            installed=tuple(r for r in results if r.status == InstallStatus.INSTALLED),
            skipped=tuple(r for r in results if r.status == InstallStatus.SKIPPED),
            failures=failures,
            bundled=bundled,
            preinstalled=preinstalled,
            version_channel=version_channel,
        )

    def _spawn_and_join(self, requests: Sequence[PluginRequest], target) -> None:
        if not requests:
            return
        with ThreadPoolExecutor(max_workers=len(requests), thread_name_prefix="hpi-install") as pool:
            futures = [pool.submit(target, req) for req in requests]
            for future in futures:
                future.result()

    def _record(self, result: InstallResult) -> None:
        with self._results_mutex:
            current = self._results.get(result.plugin_id)
            # A skip never overrides the outcome of the task that owns the id.
            if result.status == InstallStatus.SKIPPED and current is not None:
                return
            self._results[result.plugin_id] = result

    def _fail(self, plugin_id: str, reason: str, detail: str) -> None:
        self.failures.record(plugin_id, reason, detail)
        self._record(InstallResult(plugin_id=plugin_id, status=InstallStatus.FAILED, reason=reason))

    def _install(self, request: PluginRequest) -> None:
        plugin_id = request.plugin_id
        try:
            archive, fetched = self._download(request)
        except DownloadError as e:
            logger.error("%s", e)
            self._fail(plugin_id, DOWNLOAD_FAILURE, str(e))
            return

        try:
            check_integrity(archive)
            version = plugin_version(archive)
            dependencies = read_dependencies(archive)
        except IntegrityError as e:
            # ManifestError is an IntegrityError too: an unreadable manifest means a broken archive.
            logger.error("%s", e)
            archive.unlink(missing_ok=True)
            self._fail(plugin_id, INTEGRITY_FAILURE, str(e))
            return

        self._record(
            InstallResult(
                plugin_id=plugin_id,
                status=InstallStatus.INSTALLED,
                version=version,
                archive=archive,
                fetched=fetched,
            )
        )
        self._install_dependencies(plugin_id, dependencies)

    def _download(self, request: PluginRequest) -> tuple[Path, bool]:
        try:
            return self._fetch(request)
        except DownloadError as first:
            if request.plugin_id.endswith(PLUGIN_SUFFIX):
                raise
            # Some plugins do not follow the artifact id convention, e.g. docker-plugin.
            alternate = request.with_plugin_id(request.plugin_id + PLUGIN_SUFFIX)
            logger.info("Download of %s failed (%s); trying %s", request.plugin_id, first, alternate.plugin_id)
            try:
                return self._fetch(alternate)
            except DownloadError as second:
                raise DownloadError(
                    f"Failed to download plugin: {request.plugin_id} or {alternate.plugin_id} ({second})"
                ) from second

    def _fetch(self, request: PluginRequest) -> tuple[Path, bool]:
        archive = self.archive_path(request.plugin_id)
        wanted = request.version_spec.pinned_version
        if wanted and archive.is_file():
            try:
                existing = plugin_version(archive)
            except ManifestError:
                existing = None
            if existing == wanted:
                logger.info("Using provided plugin: %s", request.plugin_id)
                return archive, False

        url = self._active_channels.resolve(request)
        logger.info("Downloading plugin: %s from %s", request.plugin_id, url)
        self.client.download(url, archive)
        return archive, True

    def _install_dependencies(self, plugin_id: str, dependencies: tuple[ManifestDependency, ...]) -> None:
        if not dependencies:
            logger.info(" > %s has no dependencies", plugin_id)
            return
        logger.info(
            " > %s depends on %s",
            plugin_id,
            ",".join(f"{d.plugin_id}:{d.min_version}" for d in dependencies),
        )

        children: list[PluginRequest] = []
        for dep in dependencies:
            if dep.optional:
                logger.info("Skipping optional dependency %s", dep.plugin_id)
                continue

            have = self._available.get(dep.plugin_id)
            if have is not None:
                if version_at_least(have, dep.min_version):
                    logger.info(
                        "Skipping already installed dependency %s:%s (%s <= %s)",
                        dep.plugin_id,
                        dep.min_version,
                        dep.min_version,
                        have,
                    )
                    self._record(
                        InstallResult(
                            plugin_id=dep.plugin_id,
                            status=InstallStatus.SKIPPED,
                            reason=ALREADY_SATISFIED,
                            version=have,
                        )
                    )
                    continue
                logger.info(
                    "Upgrading bundled dependency %s:%s (%s > %s)",
                    dep.plugin_id,
                    dep.min_version,
                    dep.min_version,
                    have,
                )

            if self.locks.acquire(dep.plugin_id):
                children.append(PluginRequest.for_dependency(dep.plugin_id))
            else:
                logger.debug("Dependency %s of %s is already claimed", dep.plugin_id, plugin_id)

        self._spawn_and_join(children, self._install)
