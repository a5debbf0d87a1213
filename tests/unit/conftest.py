from threading import Lock

import pytest

from banip_sync.config import FirewallSetBinding
from banip_sync.engine import BanIPManager
from banip_sync.exceptions import ExternalCommandFailure
from banip_sync.nft import CommandExecutor

IPV4_SET = "inet pbh_qbt_helper ipv4_ban_ips"
IPV6_SET = "inet pbh_qbt_helper ipv6_ban_ips"


class RecordingExecutor(CommandExecutor):
    """Record scripts; fail those containing ``fail_on``."""

    def __init__(self):
        self.scripts: list[str] = []
        self.fail_on: str | None = None
        self._lock = Lock()

    def execute(self, script: str) -> None:
        if self.fail_on is not None and self.fail_on in script:
            raise ExternalCommandFailure(script, 1, "Error: Could not process rule")
        with self._lock:
            self.scripts.append(script)

    def clear(self) -> None:
        with self._lock:
            self.scripts.clear()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def engine(executor):
    manager = BanIPManager(FirewallSetBinding(ipv4=IPV4_SET, ipv6=IPV6_SET), executor)
    yield manager
    manager.close()
