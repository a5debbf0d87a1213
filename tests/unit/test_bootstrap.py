from pbh_helper.bootstrap import install_ruleset, render_ruleset
from pbh_helper.config import FirewallConfig


def test_ruleset_uses_configured_names_and_port():
    script = render_ruleset(FirewallConfig(peer_port=51413))

    assert script.startswith("table inet pbh_qbt_helper\ndelete table inet pbh_qbt_helper\n")
    assert "set ipv4_ban_ips {" in script
    assert "type ipv6_addr" in script
    assert "th dport 51413 ip saddr @ipv4_ban_ips drop" in script
    assert "th sport 51413 ip6 daddr @ipv6_ban_ips drop" in script
    assert "cgroupv2" not in script


def test_ruleset_matches_client_cgroup_when_configured():
    script = render_ruleset(
        FirewallConfig(cgroup_level=2, cgroup_path="system.slice/qbittorrent.service")
    )

    assert (
        'socket cgroupv2 level 2 "system.slice/qbittorrent.service" ip daddr @ipv4_ban_ips drop'
        in script
    )


def test_install_ruleset_runs_through_executor(executor):
    install_ruleset(executor, FirewallConfig())

    assert len(executor.scripts) == 1
    assert "table inet pbh_qbt_helper {" in executor.scripts[0]
