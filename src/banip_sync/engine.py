"""IP ban synchronization engine.

:class:`BanIPManager` owns the authoritative view of what is installed in the
two nftables ban sets and the membership index derived from it.  Mutations
(append, replace, flush) are queued on an :class:`OperationSerializer` so they
run one at a time in submission order; each one normalises its input, diffs it
against the authoritative sets, sends the minimal nft commands through the
injected executor and only then commits the change locally.  Membership checks
skip the queue and read whatever index is currently installed.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from .address import normalize_batch
from .config import ADDRESS_FAMILIES, AddressFamily, FirewallSetBinding
from .index import BanIndex
from .nft import CommandExecutor, render_add, render_delete, render_flush
from .operations import Append, Flush, Operation, Replace
from .serializer import OperationSerializer
from .store import AuthoritativeSet

LOG = logging.getLogger(__name__)


@dataclass
class EngineState:
    """Mutable runtime state tracked by the engine."""

    sets: Dict[AddressFamily, AuthoritativeSet] = field(
        default_factory=lambda: {f: AuthoritativeSet(f) for f in ADDRESS_FAMILIES}
    )
    index: BanIndex = field(default_factory=BanIndex)
    last_add_time: Optional[float] = None


class BanIPManager:
    """Keep the nftables ban sets and the in-process index in sync."""

    def __init__(self, binding: FirewallSetBinding, executor: CommandExecutor) -> None:
        self._binding = binding
        self._executor = executor
        self._state = EngineState()
        self._serializer = OperationSerializer(self._dispatch)
        LOG.debug(
            "BanIPManager bound to sets ipv4=%r ipv6=%r", binding.ipv4, binding.ipv6
        )

    def __enter__(self) -> "BanIPManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def ip_versions(self) -> List[AddressFamily]:
        return list(ADDRESS_FAMILIES)

    @property
    def binding(self) -> FirewallSetBinding:
        return self._binding

    @property
    def last_add_time(self) -> Optional[float]:
        """``time.monotonic()`` of the last successful add command."""

        return self._state.last_add_time

    def append(self, addresses: Iterable[str]) -> Future:
        return self._serializer.submit(Append(tuple(addresses)))

    def replace(self, addresses: Iterable[str]) -> Future:
        return self._serializer.submit(Replace(tuple(addresses)))

    def flush(self) -> Future:
        return self._serializer.submit(Flush())

    def check(self, address: str) -> bool:
        """Return ``True`` if ``address`` is covered by an installed entry."""

        return self._state.index.check(address)

    def entries(self, family: AddressFamily) -> FrozenSet[str]:
        return self._state.sets[family].snapshot()

    def close(self) -> None:
        """Finish queued operations and stop the worker thread."""

        self._serializer.close()

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------
    def _dispatch(self, operation: Operation) -> None:
        if isinstance(operation, Append):
            self._append(operation.addresses)
        elif isinstance(operation, Replace):
            self._replace(operation.addresses)
        elif isinstance(operation, Flush):
            self._flush()
        else:
            raise TypeError(f"Unsupported operation type: {type(operation)!r}")

    def _append(self, addresses: Iterable[str]) -> None:
        candidates = normalize_batch(addresses)
        for family in ADDRESS_FAMILIES:
            store = self._state.sets[family]
            new_entries = store.diff_added(candidates[family])
            if not new_entries:
                LOG.debug("append: no new %s entries", family.value)
                continue

            self._add(family, new_entries)
            self._state.index.extend(family, new_entries)

    def _replace(self, addresses: Iterable[str]) -> None:
        candidates = normalize_batch(addresses)
        if not any(candidates[family] for family in ADDRESS_FAMILIES):
            LOG.info("replace: empty ban list, flushing all sets")
            self._flush()
            return

        for family in ADDRESS_FAMILIES:
            store = self._state.sets[family]
            deleted = store.diff_removed(candidates[family])
            added = store.diff_added(candidates[family])
            if not deleted and not added:
                LOG.debug("replace: %s set already up to date", family.value)
                continue

            committed = False
            try:
                if deleted:
                    self._delete(family, deleted)
                    committed = True
                if added:
                    self._add(family, added)
                    committed = True
            finally:
                # the index follows the store even if the add failed after a delete
                if committed:
                    self._state.index.rebuild(family, store)

    def _flush(self) -> None:
        for family in ADDRESS_FAMILIES:
            self._executor.execute(render_flush(self._binding.for_family(family)))
            self._state.sets[family].clear()
            self._state.index.reset(family)
            LOG.info("Flushed %s ban set", family.value)

    # ------------------------------------------------------------------
    # nft commands; each commits to the store only after success
    # ------------------------------------------------------------------
    def _add(self, family: AddressFamily, entries: Set[str]) -> None:
        set_name = self._binding.for_family(family)
        self._executor.execute(render_add(set_name, entries))
        self._state.sets[family].add(entries)
        self._state.last_add_time = time.monotonic()
        LOG.info("Banned %d %s entries", len(entries), family.value)

    def _delete(self, family: AddressFamily, entries: Set[str]) -> None:
        set_name = self._binding.for_family(family)
        self._executor.execute(render_delete(set_name, entries))
        self._state.sets[family].remove(entries)
        LOG.info("Unbanned %d %s entries", len(entries), family.value)
