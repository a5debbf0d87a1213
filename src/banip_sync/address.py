"""Address classification and normalisation helpers.

Every address that reaches the engine goes through :func:`normalize` (or
:func:`normalize_batch`) which decides the family, canonicalises the textual
form and, for IPv6, collapses the address into its /64 aggregate.  Entries
produced here are the strings written into the nftables sets, so two entries
are considered equal iff their strings are equal.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Dict, Iterable, Optional, Set, Tuple

from .config import ADDRESS_FAMILIES, AddressFamily
from .exceptions import MalformedAddress

LOG = logging.getLogger(__name__)

#: Prefix length IPv6 peers are aggregated to before they are banned.
IPV6_AGGREGATE_PREFIX = 64

_MAX_PREFIX = {AddressFamily.IPV4: 32, AddressFamily.IPV6: 128}


def _family_of(version: int) -> AddressFamily:
    return AddressFamily.IPV4 if version == 4 else AddressFamily.IPV6


def classify(raw: str) -> Tuple[AddressFamily, str]:
    """Return the family and canonical entry for ``raw``.

    ``raw`` may be a bare address or ``address/prefix``.  IPv4 entries keep
    their dotted form (a ``/32`` collapses to the point address), IPv6
    entries are fully expanded.  Raises :class:`MalformedAddress` when the
    value is not a valid address or subnet.
    """

    value = raw.strip() if isinstance(raw, str) else ""
    if not value:
        raise MalformedAddress(str(raw), "empty value")

    try:
        if "/" in value:
            network = ipaddress.ip_network(value, strict=False)
            family = _family_of(network.version)
            if network.prefixlen == _MAX_PREFIX[family]:
                address = network.network_address
            else:
                return family, f"{_format(network.network_address)}/{network.prefixlen}"
        else:
            address = ipaddress.ip_address(value)
            family = _family_of(address.version)
    except ValueError as exc:
        raise MalformedAddress(value, str(exc)) from exc

    if getattr(address, "scope_id", None):
        raise MalformedAddress(value, "scoped addresses cannot be banned")
    return family, _format(address)


def _format(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> str:
    if address.version == 6:
        return address.exploded
    return str(address)


def expand_ipv6(raw: str) -> str:
    """Expand ``raw`` to eight zero-padded 16-bit groups.

    >>> expand_ipv6("fe80::1")
    'fe80:0000:0000:0000:0000:0000:0000:0001'
    """

    family, entry = classify(raw)
    if family is not AddressFamily.IPV6 or "/" in entry:
        raise MalformedAddress(raw, "not an IPv6 address")
    return entry


def aggregate_ipv6(raw: str) -> Optional[str]:
    """Collapse an IPv6 address (or subnet) into its /64 aggregate entry.

    Returns ``None`` for addresses whose first group is ``0000``
    (unspecified, loopback, IPv4-mapped, ...); those are never banned.
    Subnets wider than /64 keep their own prefix length.
    """

    family, entry = classify(raw)
    if family is not AddressFamily.IPV6:
        raise MalformedAddress(raw, "not an IPv6 address")

    address, prefix = split_entry(entry)
    groups = address.split(":")
    if groups[0] == "0000":
        return None

    prefix_len = IPV6_AGGREGATE_PREFIX
    if prefix is not None:
        prefix_len = min(prefix, IPV6_AGGREGATE_PREFIX)
    return ":".join(groups[:4]) + f"::/{prefix_len}"


def normalize(raw: str) -> Optional[Tuple[AddressFamily, str]]:
    """Classify ``raw`` and apply the aggregation policy.

    Returns ``None`` when the address is valid but excluded from banning.
    """

    family, entry = classify(raw)
    if family is AddressFamily.IPV4:
        return family, entry
    aggregate = aggregate_ipv6(entry)
    if aggregate is None:
        return None
    return family, aggregate


def normalize_batch(raws: Iterable[str]) -> Dict[AddressFamily, Set[str]]:
    """Normalise ``raws`` into one entry set per family.

    Malformed tokens are logged and skipped so one bad value never aborts the
    whole batch.  Blank tokens (e.g. trailing newlines) are ignored quietly.
    """

    sets: Dict[AddressFamily, Set[str]] = {family: set() for family in ADDRESS_FAMILIES}
    for raw in raws:
        if raw is None or not str(raw).strip():
            continue
        try:
            result = normalize(str(raw))
        except MalformedAddress as exc:
            LOG.warning("Skipping %s", exc)
            continue
        if result is None:
            LOG.debug("Address %s excluded from aggregation", raw)
            continue
        family, entry = result
        sets[family].add(entry)
    return sets


def split_entry(entry: str) -> Tuple[str, Optional[int]]:
    """Split ``address/prefix`` into its parts; prefix is ``None`` if absent."""

    address, sep, prefix = entry.partition("/")
    if not sep:
        return address, None
    try:
        return address, int(prefix, 10)
    except ValueError as exc:
        raise MalformedAddress(entry, "invalid prefix length") from exc


def extract_peer_address(token: str) -> str:
    """Strip the port from a qBittorrent peer token.

    Handles ``[v6]:port``, ``v4:port`` and bare addresses.
    """

    value = token.strip()
    if value.startswith("["):
        end = value.find("]")
        return value[1:end] if end != -1 else value[1:]
    if value.count(":") == 1:
        return value.split(":", 1)[0]
    return value
