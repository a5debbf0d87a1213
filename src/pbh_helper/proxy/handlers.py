"""Request/response hooks that route qBittorrent API calls into the engine."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional

from banip_sync.address import extract_peer_address
from banip_sync.engine import BanIPManager

LOG = logging.getLogger(__name__)

ALLOW_POST_PATHS = (
    "/api/v2/auth/login",
    "/api/v2/app/setPreferences",
    "/api/v2/torrents/addTrackers",
    "/api/v2/torrents/removeTrackers",
    "/api/v2/transfer/banPeers",
)

ALLOW_SET_PREFERENCES_KEYS = frozenset(
    {
        "enable_multi_connections_from_same_ip",
        "up_limit",
        "dl_limit",
        "alt_up_limit",
        "alt_dl_limit",
        "limit_utp_rate",
        "limit_lan_peers",
        "scheduler_enabled",
        "banned_IPs",
        "listen_port",
    }
)

Form = Mapping[str, List[str]]


@dataclass
class HandlerResult:
    """Response produced locally instead of forwarding the request."""

    status: int


def _first(form: Form, key: str) -> Optional[str]:
    values = form.get(key)
    if not values:
        return None
    return values[0]


class BanHandlers:
    """Hooks wired into the proxy.

    ``engine`` is ``None`` when the nftables integration is disabled; the
    hooks then let requests through untouched, except for the preference key
    allow-list which always applies.
    """

    def __init__(
        self,
        engine: Optional[BanIPManager],
        *,
        peer_filter_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._engine = engine
        self._peer_filter_window = peer_filter_window
        self._clock = clock

    def ban_peers(self, form: Form) -> Optional[HandlerResult]:
        """``POST /api/v2/transfer/banPeers``: ban ``peers`` through nftables."""

        if self._engine is None:
            return None

        peers = _first(form, "peers")
        if peers is None:
            LOG.error("banPeers: request without 'peers' field")
            return HandlerResult(400)

        addresses = [extract_peer_address(p) for p in peers.split("|") if p.strip()]
        LOG.debug("banPeers: %d peers received", len(addresses))
        self._engine.append(addresses).result()
        return HandlerResult(204)

    def set_preferences(self, form: Form) -> Optional[HandlerResult]:
        """``POST /api/v2/app/setPreferences``: filter keys, sync ``banned_IPs``."""

        raw = _first(form, "json")
        if raw is None:
            LOG.error("setPreferences: disable for no json")
            return HandlerResult(400)

        try:
            prefs = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOG.error("setPreferences: invalid json: %s", exc)
            return HandlerResult(400)
        if not isinstance(prefs, dict):
            LOG.error("setPreferences: json payload must be an object")
            return HandlerResult(400)

        for key in prefs:
            if key not in ALLOW_SET_PREFERENCES_KEYS:
                LOG.error("setPreferences: disable for key '%s'", key)
                return HandlerResult(403)

        if "banned_IPs" not in prefs or self._engine is None:
            return None

        banned = prefs["banned_IPs"] or ""
        if not isinstance(banned, str):
            LOG.error("setPreferences: 'banned_IPs' must be a string")
            return HandlerResult(400)
        self._engine.replace(banned.split("\n")).result()
        return HandlerResult(204)

    def sync_torrent_peers(self, status: int, body: bytes) -> Optional[bytes]:
        """``GET /api/v2/sync/torrentPeers``: hide peers that are already banned.

        Returns the rewritten body, or ``None`` to pass the upstream response
        through unchanged.  Filtering only happens shortly after new bans were
        added, while qBittorrent may still report the dropped connections.
        """

        if self._engine is None or not 200 <= status < 300:
            return None
        if self._peer_filter_window > 0:
            last_add = self._engine.last_add_time
            if last_add is None or self._clock() - last_add > self._peer_filter_window:
                return None

        payload = json.loads(body)
        peers = payload.get("peers") if isinstance(payload, dict) else None
        if not isinstance(peers, dict):
            return None

        banned = [key for key in peers if self._engine.check(extract_peer_address(key))]
        if not banned:
            return None
        for key in banned:
            del peers[key]
        LOG.debug("torrentPeers: hid %d banned peers", len(banned))
        return json.dumps(payload).encode("utf-8")
