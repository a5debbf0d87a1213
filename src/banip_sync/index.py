"""Fast membership index queried on the proxy's hot path.

Each family keeps an immutable, sorted list of merged integer ranges (one per
point address or subnet).  Lookups are a single binary search; updates build
a fresh index and install it with one reference assignment so readers never
see a half-built structure and never need a lock.
"""

from __future__ import annotations

import ipaddress
from bisect import bisect_right
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import ADDRESS_FAMILIES, AddressFamily

Range = Tuple[int, int]


def _entry_range(family: AddressFamily, entry: str) -> Range:
    network = ipaddress.ip_network(entry, strict=False)
    expected = 4 if family is AddressFamily.IPV4 else 6
    if network.version != expected:
        raise ValueError(f"entry {entry!r} does not belong to {family.value}")
    return int(network.network_address), int(network.broadcast_address)


def _merge(ranges: Iterable[Range]) -> List[Range]:
    merged: List[Range] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1] + 1:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
            continue
        merged.append((start, end))
    return merged


def _parse(address: str) -> Optional[ipaddress.IPv4Address | ipaddress.IPv6Address]:
    try:
        return ipaddress.ip_address(address.strip())
    except (AttributeError, ValueError):
        return None


class MembershipIndex:
    """Point and subnet matcher for a single address family."""

    __slots__ = ("family", "_starts", "_ends")

    def __init__(self, family: AddressFamily, ranges: Sequence[Range] = ()) -> None:
        self.family = family
        merged = _merge(ranges)
        self._starts = [start for start, _ in merged]
        self._ends = [end for _, end in merged]

    @classmethod
    def from_entries(cls, family: AddressFamily, entries: Iterable[str]) -> "MembershipIndex":
        """Build an index holding exactly ``entries``."""

        return cls(family, [_entry_range(family, entry) for entry in entries])

    def extend(self, entries: Iterable[str]) -> "MembershipIndex":
        """Return a new index covering the current ranges plus ``entries``."""

        added = [_entry_range(self.family, entry) for entry in entries]
        return MembershipIndex(self.family, [*self.ranges(), *added])

    def ranges(self) -> List[Range]:
        return list(zip(self._starts, self._ends))

    def __len__(self) -> int:
        return len(self._starts)

    def contains(self, value: int) -> bool:
        pos = bisect_right(self._starts, value) - 1
        return pos >= 0 and value <= self._ends[pos]

    def check(self, address: str) -> bool:
        ip = _parse(address)
        if ip is None or ip.version != (4 if self.family is AddressFamily.IPV4 else 6):
            return False
        return self.contains(int(ip))


class BanIndex:
    """Per-family :class:`MembershipIndex` holder with syntax dispatch."""

    def __init__(self) -> None:
        self._indexes: Dict[AddressFamily, MembershipIndex] = {
            family: MembershipIndex(family) for family in ADDRESS_FAMILIES
        }

    def get(self, family: AddressFamily) -> MembershipIndex:
        return self._indexes[family]

    def install(self, index: MembershipIndex) -> None:
        self._indexes[index.family] = index

    def rebuild(self, family: AddressFamily, entries: Iterable[str]) -> None:
        self.install(MembershipIndex.from_entries(family, entries))

    def extend(self, family: AddressFamily, entries: Iterable[str]) -> None:
        self.install(self._indexes[family].extend(entries))

    def reset(self, family: AddressFamily) -> None:
        self.install(MembershipIndex(family))

    def check(self, address: str) -> bool:
        ip = _parse(address)
        if ip is None:
            return False
        family = AddressFamily.IPV4 if ip.version == 4 else AddressFamily.IPV6
        return self._indexes[family].contains(int(ip))
