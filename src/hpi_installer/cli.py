from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Sequence

from ._version import __version__
from .client import InstallerError, UpdateCenterClient
from .config import Config, ConfigError, apply_env, coerce_field, config_path, load_config, save_config
from .installer import InstallReport, PluginInstaller
from .inventory import DirectoryInventory, InventoryEntry, WarBundledInventory, war_server_version
from .plugin_spec import parse_plugin_lines, read_plugin_file

# argparse dest -> Config field
_CONFIG_FLAGS: dict[str, str] = {
    "plugins_dir": "plugins_dir",
    "war": "war_path",
    "update_center": "update_center_url",
    "experimental_url": "experimental_url",
    "incrementals_url": "incrementals_url",
    "download_url": "download_url",
    "timeout_s": "timeout_s",
    "retries": "retries",
    "retry_delay_s": "retry_delay_s",
    "retry_max_time_s": "retry_max_time_s",
}


def _add_config_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--plugins-dir", help="Directory receiving <id>.jpi archives")
    parser.add_argument("--war", help="Path to jenkins.war (bundled plugins and server version)")
    parser.add_argument("--update-center", help="Update center base URL")
    parser.add_argument("--experimental-url", help="Experimental update center base URL ('' disables)")
    parser.add_argument("--incrementals-url", help="Incrementals repository mirror base URL")
    parser.add_argument("--download-url", help="Download base URL (default: <update-center>/download)")
    parser.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    parser.add_argument("--retries", type=int, help="Retries after a transient download failure")
    parser.add_argument("--retry-delay-s", type=float, help="Seconds to wait between retries")
    parser.add_argument("--retry-max-time-s", type=float, help="Stop retrying after this many seconds")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hpi-install",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Resolve and download Jenkins plugins together with their dependencies.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              REF, JENKINS_WAR, JENKINS_UC, JENKINS_UC_EXPERIMENTAL, JENKINS_INCREMENTALS_REPO_MIRROR,
              JENKINS_UC_DOWNLOAD, CURL_CONNECTION_TIMEOUT, CURL_RETRY, CURL_RETRY_DELAY, CURL_RETRY_MAX_TIME,
              HPI_INSTALLER_CONFIG_PATH
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"hpi-install {__version__}")
    p.add_argument("--config", help="Config file path (overrides HPI_INSTALLER_CONFIG_PATH)")
    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")

    sub = p.add_subparsers(dest="cmd", required=True)

    install = sub.add_parser(
        "install",
        aliases=["i"],
        help="Install plugins and their dependencies",
        description="Plugins are given as id[:version[:lock][:url]]. Without arguments or -f, lines are read from stdin.",
    )
    _add_config_flags(install)
    install.add_argument("plugins", nargs="*", help="Plugin references, e.g. git:5.2.1 or workflow-aggregator")
    install.add_argument(
        "-f",
        "--plugin-file",
        action="append",
        default=[],
        help="File with one plugin reference per line (repeatable)",
    )
    install.add_argument("--json", action="store_true", help="Output JSON")

    lst = sub.add_parser("list", help="List bundled and already installed plugins")
    _add_config_flags(lst)
    lst.add_argument("--json", action="store_true", help="Output JSON")

    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show effective config (file + environment)")
    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    _add_config_flags(cfg_set)

    return p


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s", stream=sys.stderr)
    # httpx logs every request at INFO; keep it for --verbose only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if level == logging.DEBUG else logging.WARNING)


def _flag_overrides(args: argparse.Namespace) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for dest, field_name in _CONFIG_FLAGS.items():
        value = getattr(args, dest, None)
        if value is None:
            continue
        out[field_name] = coerce_field(field_name, value)
    return out


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    cfg = apply_env(base)
    overrides = _flag_overrides(args)
    return replace(cfg, **overrides) if overrides else cfg


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _collect_lines(args: argparse.Namespace) -> list[str]:
    lines: list[str] = list(args.plugins)
    for path in args.plugin_file:
        try:
            lines.extend(read_plugin_file(path))
        except OSError as e:
            raise InstallerError(f"Could not read plugin file {path}: {e}") from e
    if not args.plugins and not args.plugin_file:
        lines = sys.stdin.read().splitlines()
    return lines


def _print_inventories(bundled: Sequence[InventoryEntry], installed: Sequence[InventoryEntry]) -> None:
    print("WAR bundled plugins:")
    for e in bundled:
        print(f"{e.plugin_id}:{e.version}")
    print()
    print("Installed plugins:")
    for e in installed:
        print(f"{e.plugin_id}:{e.version}")


def _report_payload(report: InstallReport, rejected: tuple[tuple[str, str], ...]) -> dict[str, Any]:
    return {
        "ok": report.ok,
        "installed": [
            {"plugin": r.plugin_id, "version": r.version, "fetched": r.fetched} for r in report.installed
        ],
        "skipped": [{"plugin": r.plugin_id, "version": r.version, "reason": r.reason} for r in report.skipped],
        "failed": [{"plugin": f.plugin_id, "reason": f.reason, "detail": f.detail} for f in report.failures],
        "rejected_lines": [{"line": line, "reason": reason} for line, reason in rejected],
        "version_channel": report.version_channel,
        "bundled": {e.plugin_id: e.version for e in report.bundled},
        "preinstalled": {e.plugin_id: e.version for e in report.preinstalled},
    }


def cmd_install(args: argparse.Namespace) -> int:
    parsed = parse_plugin_lines(_collect_lines(args))
    cfg = _merge_cfg(load_config(args.config), args)

    with UpdateCenterClient.from_config(cfg) as client:
        installer = PluginInstaller.from_config(cfg, client)
        report = installer.run(parsed.requests)

    if args.json:
        print(json.dumps(_report_payload(report, parsed.rejected), indent=2, sort_keys=True))
        return 0 if report.ok else 1

    print(f"plugins_dir: {installer.plugins_dir}")
    _print_table(
        [
            ["ACTION", "COUNT"],
            ["installed", str(len(report.installed))],
            ["downloaded", str(len(report.fetched))],
            ["skipped", str(len(report.skipped))],
            ["failed", str(len(report.failures))],
        ]
    )
    for r in report.installed:
        suffix = "" if r.fetched else " (already present)"
        print(f"installed: {r.plugin_id}:{r.version or '?'}{suffix}")
    for r in report.skipped:
        print(f"skipped: {r.plugin_id} ({r.reason})")
    for f in report.failures:
        print(f"failed: {f.plugin_id} ({f.reason})")
    for line, reason in parsed.rejected:
        print(f"warning: ignored line {line!r}: {reason}")
    print()
    _print_inventories(report.bundled, DirectoryInventory(installer.plugins_dir).list())

    if not report.ok:
        print(f"error: {report.error_message()}", file=sys.stderr)
        return 1
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(args.config), args)
    war_path = Path(cfg.war_path).expanduser()
    bundled = WarBundledInventory(war_path).list()
    installed = DirectoryInventory(Path(cfg.plugins_dir).expanduser()).list()

    if args.json:
        payload = {
            "server_version": war_server_version(war_path),
            "bundled": {e.plugin_id: e.version for e in bundled},
            "installed": {e.plugin_id: e.version for e in installed},
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    _print_inventories(bundled, installed)
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path(args.config)))
        return 0

    if args.subcmd == "show":
        cfg = apply_env(load_config(args.config))
        d = asdict(cfg)
        d["download_base"] = cfg.download_base
        print(json.dumps(d, indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config(args.config)
        overrides = _flag_overrides(args)
        new_cfg = replace(cfg, **overrides) if overrides else cfg
        path = save_config(new_cfg, args.config)
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args)
    try:
        if args.cmd in ("install", "i"):
            return cmd_install(args)
        if args.cmd == "list":
            return cmd_list(args)
        if args.cmd == "config":
            return cmd_config(args)
        raise AssertionError("unreachable")
    except (InstallerError, ConfigError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
