"""nftables command rendering and execution."""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .exceptions import ExternalCommandFailure

LOG = logging.getLogger(__name__)


def _element_command(verb: str, set_name: str, entries: Iterable[str]) -> str:
    items = sorted(entries)
    if not items:
        raise ValueError(f"refusing to render '{verb} element' without entries")
    return f"{verb} element {set_name} {{ {', '.join(items)} }}"


def render_add(set_name: str, entries: Iterable[str]) -> str:
    return _element_command("add", set_name, entries)


def render_delete(set_name: str, entries: Iterable[str]) -> str:
    return _element_command("delete", set_name, entries)


def render_flush(set_name: str) -> str:
    return f"flush set {set_name}"


class CommandExecutor(ABC):
    """Capability used by the engine to apply scripts to the packet filter."""

    @abstractmethod
    def execute(self, script: str) -> None:
        """Apply ``script``; raise :class:`ExternalCommandFailure` on error."""


class NftExecutor(CommandExecutor):
    """Feed scripts to ``nft -f -``.

    Parameters
    ----------
    binary:
        Path or name of the ``nft`` executable.
    timeout:
        Optional per-script timeout in seconds.  ``None`` waits for nft to
        exit, which is the default.
    """

    def __init__(self, binary: str = "nft", timeout: Optional[float] = None) -> None:
        self._binary = binary
        self._timeout = timeout

    def execute(self, script: str) -> None:
        cmd = [self._binary, "-f", "-"]
        LOG.debug("Executing %s with script:\n%s", " ".join(cmd), script)
        try:
            result = subprocess.run(
                cmd,
                input=script,
                check=False,
                text=True,
                capture_output=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            LOG.error("Failed to run %s: %s", self._binary, exc)
            raise ExternalCommandFailure(script, None, str(exc)) from exc

        if result.returncode != 0:
            LOG.error(
                "nft rejected script (exit code %s): %s",
                result.returncode,
                result.stderr.strip(),
            )
            raise ExternalCommandFailure(script, result.returncode, result.stderr)
