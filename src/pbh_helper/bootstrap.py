"""nftables ruleset installed once at startup."""

from __future__ import annotations

import logging

from banip_sync.nft import CommandExecutor

from .config import FirewallConfig

LOG = logging.getLogger(__name__)


# Declaring the table before deleting it makes the delete succeed on a clean
# host; the ban sets therefore always start empty.
NFT_TEMPLATE = """\
table {table}
delete table {table}
table {table} {{
\tset {ipv4_set} {{
\t\ttype ipv4_addr
\t\tflags interval
\t}}
\tset {ipv6_set} {{
\t\ttype ipv6_addr
\t\tflags interval
\t}}
\tchain input {{
\t\ttype filter hook input priority filter; policy accept;
\t\tmeta l4proto {{ tcp, udp }} th dport {peer_port} ip saddr @{ipv4_set} drop
\t\tmeta l4proto {{ tcp, udp }} th dport {peer_port} ip6 saddr @{ipv6_set} drop
\t}}
\tchain output {{
\t\ttype filter hook output priority filter; policy accept;
{output_rules}
\t}}
}}
"""


def _output_rules(firewall: FirewallConfig) -> str:
    port = firewall.peer_port
    lines = [
        f"\t\tmeta l4proto {{ tcp, udp }} th sport {port} ip daddr @{firewall.ipv4_set} drop",
        f"\t\tmeta l4proto {{ tcp, udp }} th sport {port} ip6 daddr @{firewall.ipv6_set} drop",
    ]
    if firewall.cgroup_path:
        # outgoing connections of the client use ephemeral ports; match them by cgroup
        match = f'socket cgroupv2 level {firewall.cgroup_level} "{firewall.cgroup_path}"'
        lines.append(f"\t\t{match} ip daddr @{firewall.ipv4_set} drop")
        lines.append(f"\t\t{match} ip6 daddr @{firewall.ipv6_set} drop")
    return "\n".join(lines)


def render_ruleset(firewall: FirewallConfig) -> str:
    return NFT_TEMPLATE.format(
        table=firewall.table,
        ipv4_set=firewall.ipv4_set,
        ipv6_set=firewall.ipv6_set,
        peer_port=firewall.peer_port,
        output_rules=_output_rules(firewall),
    )


def install_ruleset(executor: CommandExecutor, firewall: FirewallConfig) -> None:
    """Replace the helper's nftables table with a fresh copy."""

    LOG.warning("importing nftables rules into %s", firewall.table)
    executor.execute(render_ruleset(firewall))
