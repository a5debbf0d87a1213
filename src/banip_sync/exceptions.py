"""Exception hierarchy for the ban synchronization engine."""

from __future__ import annotations

from typing import Optional


class BanSyncError(Exception):
    """Base class for every error raised by :mod:`banip_sync`."""


class MalformedAddress(BanSyncError, ValueError):
    """A single address token could not be parsed.

    Batch operations skip the offending token and keep going.
    """

    def __init__(self, raw: str, reason: Optional[str] = None) -> None:
        self.raw = raw
        self.reason = reason
        message = f"malformed address {raw!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ExternalCommandFailure(BanSyncError):
    """The packet filter rejected (or could not run) a command script."""

    def __init__(
        self,
        script: str,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        self.script = script
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no error output"
        super().__init__(
            f"nft command failed (exit code {returncode}): {detail}"
        )


class QueueOrderingViolation(BanSyncError):
    """Operations were dequeued out of submission order.

    Only the serializer raises this; it indicates a bug, never a runtime
    condition callers are expected to handle.
    """
