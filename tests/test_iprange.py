"""
IP 범위 파서 테스트
"""

import pytest

from k8s_cluster_installer.errors import MalformedRange
from k8s_cluster_installer.iprange import (
    BoundedRange,
    CIDRRange,
    address_to_int,
    contains,
    int_to_address,
    parse_ip_range,
    sample_addresses,
)


def test_parse_cidr():
    """CIDR 표기 파싱"""
    ip_range = parse_ip_range("192.168.1.240/28")
    assert ip_range == CIDRRange("192.168.1.240", 28)
    assert str(ip_range) == "192.168.1.240/28"
    assert ip_range.size == 16


def test_parse_bounded_with_whitespace():
    """범위 표기 파싱 (앞뒤 공백 허용)"""
    ip_range = parse_ip_range("  192.168.1.200-192.168.1.210\n")
    assert ip_range == BoundedRange("192.168.1.200", "192.168.1.210")
    assert ip_range.size == 11


@pytest.mark.parametrize("text", ["999.1.1.1/24", "10.0.0.1/33", "10.0.0.1-abc", "", "   ", "10.0.0.1", "10.0.0/24"])
def test_parse_rejects_malformed(text):
    with pytest.raises(MalformedRange):
        parse_ip_range(text)


def test_malformed_range_is_value_error():
    with pytest.raises(ValueError):
        parse_ip_range("10.0.0.1-10.0.0.300")


@pytest.mark.parametrize("network,prefix", [
    ("10.0.0.1", 0), ("10.0.0.1", 8), ("172.16.5.9", 20), ("192.168.1.7", 31), ("192.168.1.7", 32),
])
def test_cidr_contains_own_network(network, prefix):
    assert contains(parse_ip_range(f"{network}/{prefix}"), network)


def test_cidr_pool_scenario():
    """/28 풀: .241-.255 허용, 풀 밖 주소 거부"""
    pool = parse_ip_range("192.168.1.240/28")
    for last in range(241, 256):
        assert contains(pool, f"192.168.1.{last}")
    assert not contains(pool, "192.168.1.239")
    assert not contains(pool, "192.168.2.1")


def test_bounded_pool_scenario():
    """.200-.207 범위는 정확히 8개 주소"""
    pool = parse_ip_range("192.168.1.200-192.168.1.207")
    accepted = [last for last in range(0, 256) if contains(pool, f"192.168.1.{last}")]
    assert accepted == list(range(200, 208))
    assert not contains(pool, "192.168.1.199")
    assert not contains(pool, "192.168.1.208")


def test_bounded_interval_across_octets():
    pool = parse_ip_range("10.0.0.250-10.0.1.5")
    start, end = address_to_int("10.0.0.250"), address_to_int("10.0.1.5")
    for value in range(start - 3, end + 4):
        assert contains(pool, int_to_address(value)) == (start <= value <= end)


def test_host_bits_not_required_to_be_zero():
    pool = parse_ip_range("192.168.1.245/28")
    assert contains(pool, "192.168.1.240")
    assert contains(pool, "192.168.1.255")


def test_prefix_32_matches_single_address():
    pool = parse_ip_range("10.1.2.3/32")
    assert contains(pool, "10.1.2.3")
    assert not contains(pool, "10.1.2.4")
    assert pool.size == 1


def test_prefix_0_matches_everything():
    """프리픽스 0은 모든 주소와 일치"""
    pool = parse_ip_range("0.0.0.0/0")
    assert contains(pool, "1.2.3.4")
    assert contains(pool, "255.255.255.255")


def test_reversed_bounded_range_is_empty():
    pool = parse_ip_range("10.0.0.9-10.0.0.1")
    assert pool.size == 0
    assert not contains(pool, "10.0.0.5")
    assert sample_addresses(pool) == []


def test_contains_rejects_malformed_address():
    with pytest.raises(MalformedRange):
        contains(parse_ip_range("10.0.0.0/8"), "10.0.0")


def test_address_int_conversion_edges():
    assert address_to_int("0.0.0.0") == 0
    assert address_to_int("255.255.255.255") == 0xFFFFFFFF
    assert address_to_int("192.168.1.1") == 0xC0A80101
    assert int_to_address(0xC0A80101) == "192.168.1.1"
    with pytest.raises(ValueError):
        int_to_address(1 << 32)


def test_sample_addresses():
    assert sample_addresses(parse_ip_range("192.168.1.240/28")) == [
        "192.168.1.241", "192.168.1.242", "192.168.1.243",
    ]
    assert sample_addresses(parse_ip_range("10.0.0.5/32")) == ["10.0.0.5"]
