"""YAML and environment configuration loader for the helper."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlsplit

import yaml

from banip_sync.config import FirewallSetBinding

LOG = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 19830
DEFAULT_QBT_ENDPOINT = "http://127.0.0.1:8080"
DEFAULT_PEER_PORT = 6881
DEFAULT_TABLE = "inet pbh_qbt_helper"


@dataclass
class ProxyConfig:
    listen_host: str = "0.0.0.0"
    http_port: int = DEFAULT_HTTP_PORT
    qbt_endpoint: str = DEFAULT_QBT_ENDPOINT
    upstream_timeout: float = 10.0
    max_body_size: int = 10 * 1024 * 1024
    peer_filter_window: float = 60.0


@dataclass
class FirewallConfig:
    enabled: bool = False
    nft_binary: str = "nft"
    table: str = DEFAULT_TABLE
    ipv4_set: str = "ipv4_ban_ips"
    ipv6_set: str = "ipv6_ban_ips"
    peer_port: int = DEFAULT_PEER_PORT
    cgroup_level: int = 2
    cgroup_path: Optional[str] = None
    bootstrap: bool = True

    def set_binding(self) -> FirewallSetBinding:
        return FirewallSetBinding(
            ipv4=f"{self.table} {self.ipv4_set}",
            ipv6=f"{self.table} {self.ipv6_set}",
        )


@dataclass
class RateLimitConfig:
    capacity: int = 10
    interval: float = 3.0
    refill: int = 1


@dataclass
class AgentConfig:
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    firewall: FirewallConfig = field(default_factory=FirewallConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


def _validate_endpoint(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"invalid qBittorrent endpoint '{value}'")
    return f"{parts.scheme}://{parts.netloc}"


def _section(data: dict, name: str) -> dict:
    section = data.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return section


def _parse_proxy(section: dict) -> ProxyConfig:
    defaults = ProxyConfig()
    return ProxyConfig(
        listen_host=str(section.get("listen_host", defaults.listen_host)),
        http_port=int(section.get("http_port", defaults.http_port)),
        qbt_endpoint=_validate_endpoint(
            str(section.get("qbt_endpoint", defaults.qbt_endpoint))
        ),
        upstream_timeout=float(section.get("upstream_timeout", defaults.upstream_timeout)),
        max_body_size=int(section.get("max_body_size", defaults.max_body_size)),
        peer_filter_window=float(
            section.get("peer_filter_window", defaults.peer_filter_window)
        ),
    )


def _optional_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _parse_firewall(section: dict) -> FirewallConfig:
    defaults = FirewallConfig()
    return FirewallConfig(
        enabled=bool(section.get("enabled", defaults.enabled)),
        nft_binary=str(section.get("nft_binary", defaults.nft_binary)),
        table=str(section.get("table", defaults.table)),
        ipv4_set=str(section.get("ipv4_set", defaults.ipv4_set)),
        ipv6_set=str(section.get("ipv6_set", defaults.ipv6_set)),
        peer_port=int(section.get("peer_port", defaults.peer_port)),
        cgroup_level=int(section.get("cgroup_level", defaults.cgroup_level)),
        cgroup_path=_optional_str(section.get("cgroup_path")),
        bootstrap=bool(section.get("bootstrap", defaults.bootstrap)),
    )


def _parse_rate_limit(section: dict) -> RateLimitConfig:
    defaults = RateLimitConfig()
    config = RateLimitConfig(
        capacity=int(section.get("capacity", defaults.capacity)),
        interval=float(section.get("interval", defaults.interval)),
        refill=int(section.get("refill", defaults.refill)),
    )
    if config.capacity <= 0 or config.interval <= 0 or config.refill <= 0:
        raise ValueError("rate_limit values must be positive")
    return config


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = environ.get(key)
    if value is None:
        return default
    try:
        return int(value, 10)
    except ValueError:
        LOG.warning("ignoring non-numeric %s=%r, using %s", key, value, default)
        return default


def _apply_environment(
    config: AgentConfig, environ: Mapping[str, str], platform: str
) -> None:
    config.proxy.http_port = _env_int(environ, "HTTP_PORT", config.proxy.http_port)
    config.firewall.peer_port = _env_int(
        environ, "QBT_PEER_PORT", config.firewall.peer_port
    )
    config.firewall.cgroup_level = _env_int(
        environ, "QBT_CGROUP_LEVEL", config.firewall.cgroup_level
    )

    endpoint = environ.get("QBT_ENDPOINT")
    if endpoint is not None:
        try:
            config.proxy.qbt_endpoint = _validate_endpoint(endpoint)
        except ValueError:
            LOG.warning("ignoring invalid QBT_ENDPOINT=%r", endpoint)

    use_nftables = environ.get("USE_NFTABLES")
    if use_nftables is not None:
        config.firewall.enabled = use_nftables == "yes"

    if config.firewall.enabled and not platform.startswith("linux"):
        LOG.warning("nftables integration requires Linux; disabling it")
        config.firewall.enabled = False


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    platform: str = sys.platform,
) -> AgentConfig:
    """Build the agent configuration.

    Values come from the optional YAML file at ``path`` and are then
    overridden by ``HTTP_PORT``, ``QBT_ENDPOINT``, ``QBT_PEER_PORT``,
    ``QBT_CGROUP_LEVEL`` and ``USE_NFTABLES`` from ``environ``
    (``os.environ`` by default).
    """

    data: dict = {}
    if path is not None:
        loaded = yaml.safe_load(Path(path).read_text())
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError("Helper configuration must be a mapping")
        data = loaded or {}

    config = AgentConfig(
        proxy=_parse_proxy(_section(data, "proxy")),
        firewall=_parse_firewall(_section(data, "firewall")),
        rate_limit=_parse_rate_limit(_section(data, "rate_limit")),
    )
    _apply_environment(config, os.environ if environ is None else environ, platform)
    return config
