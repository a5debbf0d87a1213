"""Configuration data structures for the ban synchronization engine.

These light-weight dataclasses describe the address families the engine
partitions its state by and the nftables sets it manages, without tying the
engine to the runtime configuration loader in :mod:`pbh_helper.config`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class AddressFamily(Enum):
    """Protocol families tracked by the engine.

    Every store, index and nftables set is keyed by family; operations on one
    family never touch the other.
    """

    IPV4 = "ipv4"
    IPV6 = "ipv6"


#: Processing order used by every operation.
ADDRESS_FAMILIES: Tuple[AddressFamily, ...] = (AddressFamily.IPV4, AddressFamily.IPV6)


@dataclass(frozen=True)
class FirewallSetBinding:
    """Names of the nftables sets owned by one engine instance.

    Attributes
    ----------
    ipv4:
        Fully qualified set name for IPv4 entries, e.g.
        ``inet pbh_qbt_helper ipv4_ban_ips``.
    ipv6:
        Fully qualified set name for IPv6 entries.
    """

    ipv4: str
    ipv6: str

    def __post_init__(self) -> None:
        for name in (self.ipv4, self.ipv6):
            if not name or not name.strip():
                raise ValueError("nftables set names cannot be empty")

    def for_family(self, family: AddressFamily) -> str:
        """Return the set name bound to ``family``."""

        if family is AddressFamily.IPV4:
            return self.ipv4
        return self.ipv6
