from ._version import __version__
from .client import InstallerError, UpdateCenterClient
from .config import Config, load_config
from .installer import InstallReport, PluginInstaller
from .plugin_spec import PluginRequest, VersionSpec, parse_plugin_line, parse_plugin_lines

__all__ = [
    "__version__",
    "Config",
    "InstallReport",
    "InstallerError",
    "PluginInstaller",
    "PluginRequest",
    "UpdateCenterClient",
    "VersionSpec",
    "load_config",
    "parse_plugin_line",
    "parse_plugin_lines",
]
