from pathlib import Path

import pytest

from pbh_helper.config import load_config


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "helper.yaml"
    config_path.write_text(
        """
proxy:
  listen_host: 127.0.0.1
  http_port: 18000
  qbt_endpoint: http://10.0.0.5:8080/api/
  upstream_timeout: 4
firewall:
  enabled: true
  table: inet custom_table
  peer_port: 51413
  cgroup_path: system.slice/qbittorrent.service
rate_limit:
  capacity: 5
  interval: 1.5
"""
    )

    cfg = load_config(config_path, environ={}, platform="linux")

    assert cfg.proxy.listen_host == "127.0.0.1"
    assert cfg.proxy.http_port == 18000
    assert cfg.proxy.qbt_endpoint == "http://10.0.0.5:8080"
    assert cfg.proxy.upstream_timeout == pytest.approx(4.0)
    assert cfg.proxy.max_body_size == 10 * 1024 * 1024
    assert cfg.firewall.enabled is True
    assert cfg.firewall.peer_port == 51413
    assert cfg.firewall.cgroup_path == "system.slice/qbittorrent.service"
    assert cfg.rate_limit.capacity == 5
    assert cfg.rate_limit.interval == pytest.approx(1.5)
    assert cfg.rate_limit.refill == 1

    binding = cfg.firewall.set_binding()
    assert binding.ipv4 == "inet custom_table ipv4_ban_ips"
    assert binding.ipv6 == "inet custom_table ipv6_ban_ips"


def test_defaults_without_file():
    cfg = load_config(environ={}, platform="linux")

    assert cfg.proxy.http_port == 19830
    assert cfg.proxy.qbt_endpoint == "http://127.0.0.1:8080"
    assert cfg.firewall.enabled is False
    assert cfg.firewall.peer_port == 6881
    assert cfg.firewall.set_binding().ipv4 == "inet pbh_qbt_helper ipv4_ban_ips"


def test_environment_overrides_file(tmp_path: Path):
    config_path = tmp_path / "helper.yaml"
    config_path.write_text("proxy:\n  http_port: 18000\n")

    cfg = load_config(
        config_path,
        environ={
            "HTTP_PORT": "19999",
            "QBT_ENDPOINT": "https://qbt.example:8443",
            "QBT_PEER_PORT": "not-a-number",
            "QBT_CGROUP_LEVEL": "3",
            "USE_NFTABLES": "yes",
        },
        platform="linux",
    )

    assert cfg.proxy.http_port == 19999
    assert cfg.proxy.qbt_endpoint == "https://qbt.example:8443"
    assert cfg.firewall.peer_port == 6881
    assert cfg.firewall.cgroup_level == 3
    assert cfg.firewall.enabled is True


def test_nftables_requires_linux():
    cfg = load_config(environ={"USE_NFTABLES": "yes"}, platform="darwin")

    assert cfg.firewall.enabled is False


def test_invalid_endpoint_in_environment_is_ignored():
    cfg = load_config(environ={"QBT_ENDPOINT": "not a url"}, platform="linux")

    assert cfg.proxy.qbt_endpoint == "http://127.0.0.1:8080"


def test_rejects_non_mapping_sections(tmp_path: Path):
    config_path = tmp_path / "helper.yaml"
    config_path.write_text("proxy: [1, 2]\n")

    with pytest.raises(ValueError):
        load_config(config_path, environ={}, platform="linux")
