"""Filtering reverse proxy for the qBittorrent Web API."""

from .handlers import BanHandlers, HandlerResult  # noqa: F401
from .server import ProxyServer  # noqa: F401

__all__ = ["BanHandlers", "HandlerResult", "ProxyServer"]
