"""Operation primitives consumed by the serializer worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union


@dataclass(frozen=True)
class Append:
    """Ban ``addresses`` in addition to everything already banned."""

    addresses: Sequence[str]


@dataclass(frozen=True)
class Replace:
    """Make ``addresses`` the complete ban list.

    An empty list (after normalisation) flushes both sets.
    """

    addresses: Sequence[str]


@dataclass(frozen=True)
class Flush:
    """Drop every banned entry for both families."""


Operation = Union[Append, Replace, Flush]
