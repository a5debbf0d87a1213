import pytest

from banip_sync.address import (
    aggregate_ipv6,
    classify,
    expand_ipv6,
    extract_peer_address,
    normalize_batch,
    split_entry,
)
from banip_sync.config import AddressFamily
from banip_sync.exceptions import MalformedAddress


def test_classify_detects_family():
    assert classify("203.0.113.5") == (AddressFamily.IPV4, "203.0.113.5")
    family, entry = classify("2001:db8::1")
    assert family is AddressFamily.IPV6
    assert entry == "2001:0db8:0000:0000:0000:0000:0000:0001"


@pytest.mark.parametrize(
    "raw",
    ["", "   ", "not-an-ip", "256.1.1.1", "1.2.3", "2001:db8:::1", "10.0.0.0/33", "1.2.3.4/x"],
)
def test_classify_rejects_malformed(raw):
    with pytest.raises(MalformedAddress):
        classify(raw)


def test_classify_keeps_ipv4_subnets():
    assert classify("198.51.100.7/24") == (AddressFamily.IPV4, "198.51.100.0/24")
    assert classify("198.51.100.7/32") == (AddressFamily.IPV4, "198.51.100.7")


def test_expand_ipv6_is_canonical():
    expanded = expand_ipv6("fe80::1")

    assert expanded == "fe80:0000:0000:0000:0000:0000:0000:0001"
    groups = expanded.split(":")
    assert len(groups) == 8
    assert all(len(group) == 4 for group in groups)


def test_expand_ipv6_rejects_ipv4():
    with pytest.raises(MalformedAddress):
        expand_ipv6("192.0.2.1")


def test_aggregate_ipv6_same_prefix_is_deterministic():
    first = aggregate_ipv6("2001:db8:abcd:1234::5")
    second = aggregate_ipv6("2001:db8:abcd:1234:ffff:1:2:3")

    assert first == second == "2001:0db8:abcd:1234::/64"


def test_aggregate_ipv6_discards_zero_first_group():
    assert aggregate_ipv6("::1") is None
    assert aggregate_ipv6("::ffff:192.0.2.1") is None


def test_aggregate_ipv6_keeps_wider_subnets():
    assert aggregate_ipv6("2001:db8::/32") == "2001:0db8:0000:0000::/32"
    assert aggregate_ipv6("2001:db8:1:2:3::/80") == "2001:0db8:0001:0002::/64"


def test_normalize_batch_skips_bad_tokens():
    sets = normalize_batch(
        [
            "203.0.113.5",
            "garbage",
            "",
            "2001:db8:abcd:1234::5",
            "2001:db8:abcd:1234::6",
            "::1",
            "203.0.113.5",
        ]
    )

    assert sets[AddressFamily.IPV4] == {"203.0.113.5"}
    assert sets[AddressFamily.IPV6] == {"2001:0db8:abcd:1234::/64"}


def test_split_entry():
    assert split_entry("10.0.0.0/8") == ("10.0.0.0", 8)
    assert split_entry("10.0.0.1") == ("10.0.0.1", None)


@pytest.mark.parametrize(
    "token, expected",
    [
        ("203.0.113.5:6881", "203.0.113.5"),
        ("[2001:db8::1]:51413", "2001:db8::1"),
        ("203.0.113.5", "203.0.113.5"),
        ("2001:db8::1", "2001:db8::1"),
    ],
)
def test_extract_peer_address(token, expected):
    assert extract_peer_address(token) == expected
