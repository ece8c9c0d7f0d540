from __future__ import annotations

import logging

from .client import UpdateCenterClient
from .config import Config
from .plugin_spec import PluginRequest, VersionKind
from .versions import major_minor

logger = logging.getLogger(__name__)

UPDATE_CENTER_JSON = "update-center.json"


def discover_version_channel(
    client: UpdateCenterClient,
    update_center_url: str,
    server_version: str | None,
) -> str | None:
    """
    Ask the update center which channel serves the given server line.

    The update center redirects ``update-center.json?version=X.Y`` to a version-specific
    location (e.g. ``/dynamic-stable-2.426.1/update-center.json``); that location, minus the
    file name, is the base for resolving ``latest`` downloads.
    """
    if not update_center_url:
        return None
    url = f"{update_center_url.rstrip('/')}/{UPDATE_CENTER_JSON}"
    effective = client.effective_url(url, params={"version": major_minor(server_version)})
    if not effective:
        return None
    base = effective.split("?", 1)[0].replace(UPDATE_CENTER_JSON, "").rstrip("/")
    return base or None


class ChannelResolver:
    def __init__(
        self,
        *,
        download_base: str,
        incrementals_base: str,
        experimental_base: str | None = None,
        version_channel: str | None = None,
    ) -> None:
        self.download_base = download_base.rstrip("/")
        self.incrementals_base = incrementals_base.rstrip("/")
        self.experimental_base = experimental_base.rstrip("/") if experimental_base else None
        self.version_channel = version_channel.rstrip("/") if version_channel else None

    @classmethod
    def from_config(cls, cfg: Config, *, version_channel: str | None = None) -> "ChannelResolver":
        return cls(
            download_base=cfg.download_base,
            incrementals_base=cfg.incrementals_url,
            experimental_base=cfg.experimental_url,
            version_channel=version_channel,
        )

    def with_version_channel(self, version_channel: str | None) -> "ChannelResolver":
        return ChannelResolver(
            download_base=self.download_base,
            incrementals_base=self.incrementals_base,
            experimental_base=self.experimental_base,
            version_channel=version_channel,
        )

    def resolve(self, request: PluginRequest) -> str:
        plugin_id = request.plugin_id
        spec = request.version_spec

        if request.pinned_url:
            return request.pinned_url

        if spec.kind == VersionKind.LATEST and self.version_channel:
            return f"{self.version_channel}/latest/{plugin_id}.hpi"

        if spec.kind == VersionKind.EXPERIMENTAL:
            if self.experimental_base:
                return f"{self.experimental_base}/latest/{plugin_id}.hpi"
            logger.debug("No experimental channel configured; resolving %s from the default channel", plugin_id)

        if spec.kind == VersionKind.INCREMENTALS:
            group_path = (spec.group_id or "").replace(".", "/")
            version = spec.version
            return f"{self.incrementals_base}/{group_path}/{plugin_id}/{version}/{plugin_id}-{version}.hpi"

        return f"{self.download_base}/plugins/{plugin_id}/{spec.token}/{plugin_id}.hpi"
