"""Authoritative record of the entries installed in the packet filter."""

from __future__ import annotations

from typing import FrozenSet, Iterable, Iterator, Set

from .config import AddressFamily


class AuthoritativeSet:
    """Entries the engine believes are present in one family's nftables set.

    Only the synchronizer mutates an instance, and only after the packet
    filter acknowledged the matching command.
    """

    def __init__(self, family: AddressFamily, entries: Iterable[str] = ()) -> None:
        self.family = family
        self._entries: Set[str] = set(entries)

    def __contains__(self, entry: object) -> bool:
        return entry in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def contains(self, entry: str) -> bool:
        return entry in self._entries

    def add(self, entries: Iterable[str]) -> None:
        self._entries.update(entries)

    def remove(self, entries: Iterable[str]) -> None:
        self._entries.difference_update(entries)

    def clear(self) -> None:
        self._entries.clear()

    def diff_added(self, candidate: Iterable[str]) -> Set[str]:
        """Entries in ``candidate`` that are not installed yet."""

        return set(candidate) - self._entries

    def diff_removed(self, candidate: Iterable[str]) -> Set[str]:
        """Installed entries that ``candidate`` no longer contains."""

        return self._entries - set(candidate)

    def snapshot(self) -> FrozenSet[str]:
        return frozenset(self._entries)
