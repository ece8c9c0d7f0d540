from __future__ import annotations

import io
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path

from .client import IntegrityError, ManifestError

MANIFEST_PATH = "META-INF/MANIFEST.MF"
VERSION_HEADER = "Plugin-Version"
DEPENDENCIES_HEADER = "Plugin-Dependencies"
OPTIONAL_MARKER = "resolution:=optional"


@dataclass(frozen=True)
class ManifestDependency:
    plugin_id: str
    min_version: str
    optional: bool = False


def parse_manifest(text: str) -> dict[str, str]:
    """
    Parse the main section of a JAR manifest.

    Lines are wrapped at 72 bytes; a line starting with a single space continues the previous header.
    """
    headers: dict[str, str] = {}
    last: str | None = None
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if line.startswith(" ") and last is not None:
            headers[last] += line[1:]
            continue
        if not line.strip():
            if headers:
                # End of the main section; per-entry sections follow.
                break
            continue
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            last = None
            continue
        last = key.strip()
        headers[last] = value[1:] if value.startswith(" ") else value
    return {k: v.strip() for k, v in headers.items()}


def _manifest_from_zip(zf: zipfile.ZipFile) -> dict[str, str]:
    try:
        raw = zf.read(MANIFEST_PATH)
    except KeyError:
        return {}
    return parse_manifest(raw.decode("utf-8", errors="replace"))


def read_manifest(path: Path) -> dict[str, str]:
    try:
        with zipfile.ZipFile(path, "r") as zf:
            return _manifest_from_zip(zf)
    except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as e:
        raise ManifestError(f"Could not read manifest of {path}: {e}") from e


def read_manifest_bytes(data: bytes, *, name: str = "<archive>") -> dict[str, str]:
    try:
        with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
            return _manifest_from_zip(zf)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise ManifestError(f"Could not read manifest of {name}: {e}") from e


def plugin_version(path: Path) -> str | None:
    return read_manifest(path).get(VERSION_HEADER) or None


def check_integrity(path: Path) -> None:
    try:
        with zipfile.ZipFile(path, "r") as zf:
            bad = zf.testzip()
    except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as e:
        raise IntegrityError(f"Downloaded file is not a valid ZIP: {path} ({e})") from e
    if bad is not None:
        raise IntegrityError(f"Downloaded file is not a valid ZIP: {path} (corrupt entry {bad!r})")


def parse_dependencies(value: str | None) -> tuple[ManifestDependency, ...]:
    if not value:
        return ()
    deps: list[ManifestDependency] = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        head, _, _attrs = entry.partition(";")
        plugin_id, _, min_version = head.partition(":")
        plugin_id = plugin_id.strip()
        if not plugin_id:
            continue
        deps.append(
            ManifestDependency(
                plugin_id=plugin_id,
                min_version=min_version.strip() or "0",
                optional=OPTIONAL_MARKER in entry,
            )
        )
    return tuple(deps)


def read_dependencies(path: Path) -> tuple[ManifestDependency, ...]:
    return parse_dependencies(read_manifest(path).get(DEPENDENCIES_HEADER))
