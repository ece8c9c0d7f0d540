import io
import zipfile
from pathlib import Path


def manifest_text(plugin_id: str, version: str, dependencies: str | None = None, extra: dict[str, str] | None = None) -> str:
    lines = [
        "Manifest-Version: 1.0",
        f"Short-Name: {plugin_id}",
        f"Plugin-Version: {version}",
    ]
    if dependencies:
        lines.append(f"Plugin-Dependencies: {dependencies}")
    for key, value in (extra or {}).items():
        lines.append(f"{key}: {value}")
    return "\r\n".join(lines) + "\r\n\r\n"


def hpi_bytes(plugin_id: str, version: str, dependencies: str | None = None, extra: dict[str, str] | None = None) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("META-INF/MANIFEST.MF", manifest_text(plugin_id, version, dependencies, extra))
        zf.writestr(f"WEB-INF/lib/{plugin_id}.jar", b"jar-bytes")
    return buf.getvalue()


def write_hpi(path: Path, plugin_id: str, version: str, dependencies: str | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(hpi_bytes(plugin_id, version, dependencies))
    return path


def war_bytes(plugins: dict[str, str], *, server_version: str = "2.426.3") -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(
            "META-INF/MANIFEST.MF",
            f"Manifest-Version: 1.0\r\nJenkins-Version: {server_version}\r\n\r\n",
        )
        for plugin_id, version in plugins.items():
            zf.writestr(f"WEB-INF/plugins/{plugin_id}.hpi", hpi_bytes(plugin_id, version))
        zf.writestr("WEB-INF/detached-plugins/detached.hpi", hpi_bytes("detached", "1.0"))
    return buf.getvalue()
