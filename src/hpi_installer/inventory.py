from __future__ import annotations

import logging
import re
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from .archive import VERSION_HEADER, plugin_version, read_manifest, read_manifest_bytes
from .client import ManifestError
from .versions import compare_versions

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".jpi"
# Plugins bundled in the WAR; detached plugins live under WEB-INF/detached-plugins and are not counted.
_BUNDLED_ENTRY_RE = re.compile(r"^WEB-INF/plugins/([^/]+)\.[hj]pi$")


@dataclass(frozen=True)
class InventoryEntry:
    plugin_id: str
    version: str


class Inventory(Protocol):
    def list(self) -> list[InventoryEntry]:
        ...


class StaticInventory:
    def __init__(self, entries: Mapping[str, str] | Iterable[InventoryEntry] = ()) -> None:
        if isinstance(entries, Mapping):
            self._entries = [InventoryEntry(plugin_id=k, version=v) for k, v in entries.items()]
        else:
            self._entries = list(entries)

    def list(self) -> list[InventoryEntry]:
        return list(self._entries)


class DirectoryInventory:
    """Plugins already present as ``<id>.jpi`` archives in the plugins directory."""

    def __init__(self, plugins_dir: Path) -> None:
        self.plugins_dir = Path(plugins_dir)

    def list(self) -> list[InventoryEntry]:
        if not self.plugins_dir.is_dir():
            return []
        out: list[InventoryEntry] = []
        for path in sorted(self.plugins_dir.glob(f"*{ARCHIVE_SUFFIX}")):
            try:
                version = plugin_version(path)
            except ManifestError as e:
                logger.warning("Ignoring unreadable plugin archive %s: %s", path, e)
                continue
            if version:
                out.append(InventoryEntry(plugin_id=path.name[: -len(ARCHIVE_SUFFIX)], version=version))
        return out


class WarBundledInventory:
    """Plugins shipped inside the server WAR."""

    def __init__(self, war_path: Path) -> None:
        self.war_path = Path(war_path)

    def list(self) -> list[InventoryEntry]:
        if not self.war_path.is_file():
            logger.info("war not found, installing all plugins: %s", self.war_path)
            return []
        out: list[InventoryEntry] = []
        try:
            with zipfile.ZipFile(self.war_path, "r") as war:
                for name in sorted(war.namelist()):
                    m = _BUNDLED_ENTRY_RE.match(name)
                    if not m:
                        continue
                    plugin_id = m.group(1).split(".", 1)[0]
                    try:
                        version = read_manifest_bytes(war.read(name), name=name).get(VERSION_HEADER)
                    except ManifestError as e:
                        logger.warning("Ignoring unreadable bundled plugin %s: %s", name, e)
                        continue
                    if version:
                        out.append(InventoryEntry(plugin_id=plugin_id, version=version))
        except (zipfile.BadZipFile, zlib.error, OSError) as e:
            raise ManifestError(f"Could not read {self.war_path}: {e}") from e
        return out


def war_server_version(war_path: Path) -> str | None:
    path = Path(war_path)
    if not path.is_file():
        return None
    try:
        headers = read_manifest(path)
    except ManifestError as e:
        logger.warning("Could not determine server version from %s: %s", path, e)
        return None
    return headers.get("Jenkins-Version") or headers.get("Implementation-Version") or None


def snapshot(*inventories: Inventory) -> dict[str, str]:
    """Union of inventories; when an id shows up more than once the highest version wins."""
    merged: dict[str, str] = {}
    for inventory in inventories:
        for entry in inventory.list():
            current = merged.get(entry.plugin_id)
            if current is None or compare_versions(entry.version, current) > 0:
                merged[entry.plugin_id] = entry.version
    return merged
