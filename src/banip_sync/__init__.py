"""IP ban synchronization engine for the qBittorrent PeerBanHelper sidecar.

The package keeps two nftables sets (one per address family) in step with the
ban lists PeerBanHelper pushes through the qBittorrent Web API, and exposes a
fast in-process membership check so the proxy can hide already-banned peers
from later peer listings.

* :mod:`banip_sync.address` classifies, canonicalises and aggregates
  addresses;
* :mod:`banip_sync.store` and :mod:`banip_sync.index` hold the confirmed
  state and the derived lookup structure;
* :mod:`banip_sync.nft` renders the element commands and runs them through
  ``nft``;
* :mod:`banip_sync.serializer` runs mutations one at a time, in order;
* :class:`banip_sync.engine.BanIPManager` ties them together.

Nothing here reads process configuration; callers pass the set names and an
executor explicitly so tests can substitute a recording executor.
"""

from .config import AddressFamily, FirewallSetBinding  # noqa: F401
from .engine import BanIPManager  # noqa: F401
from .exceptions import (  # noqa: F401
    BanSyncError,
    ExternalCommandFailure,
    MalformedAddress,
)
from .nft import CommandExecutor, NftExecutor  # noqa: F401

__all__ = [
    "AddressFamily",
    "BanIPManager",
    "BanSyncError",
    "CommandExecutor",
    "ExternalCommandFailure",
    "FirewallSetBinding",
    "MalformedAddress",
    "NftExecutor",
]
