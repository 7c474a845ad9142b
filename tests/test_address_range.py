"""
Unit tests for address and unit ID specification parsing.
"""

import socket
from collections import namedtuple

import pytest

from sunspec_controller.common.exceptions import ConfigError
from sunspec_controller.services.discovery import address_range
from sunspec_controller.services.discovery.address_range import (
    default_unit_ids,
    expand_address_range,
    expand_unit_ids,
)

snicaddr = namedtuple("snicaddr", ["family", "address", "netmask", "broadcast", "ptp"])


class TestExpandAddressRange:

    def test_single_host(self):
        assert expand_address_range("192.168.1.10") == ["192.168.1.10"]

    def test_list(self):
        assert expand_address_range("192.168.1.10, 192.168.1.12") == [
            "192.168.1.10",
            "192.168.1.12",
        ]

    def test_last_octet_range(self):
        assert expand_address_range("192.168.1.10-13") == [
            "192.168.1.10",
            "192.168.1.11",
            "192.168.1.12",
            "192.168.1.13",
        ]

    def test_cidr_excludes_network_and_broadcast(self):
        hosts = expand_address_range("192.168.1.0/24")

        assert len(hosts) == 254
        assert hosts[0] == "192.168.1.1"
        assert hosts[-1] == "192.168.1.254"

    def test_cidr_non_strict(self):
        assert expand_address_range("10.0.0.5/30") == ["10.0.0.5", "10.0.0.6"]

    def test_tiny_networks_have_no_hosts(self):
        assert expand_address_range("10.0.0.5/32") == []
        assert expand_address_range("10.0.0.4/31") == []

    def test_duplicates_removed(self):
        assert expand_address_range("10.0.0.1, 10.0.0.1-2") == ["10.0.0.1", "10.0.0.2"]

    def test_empty(self):
        assert expand_address_range("") == []
        assert expand_address_range("  ") == []

    @pytest.mark.parametrize("spec", [
        "bad_host!",
        "inverter..local",
        "-inverter.local",
        "192.168.1.300",
        "192.168.1.10-5",
        "192.168.1.10-300",
        "192.168.1.0/33",
    ])
    def test_invalid(self, spec):
        with pytest.raises(ConfigError):
            expand_address_range(spec)

    def test_hostnames(self):
        assert expand_address_range("inverter.local") == ["inverter.local"]
        assert expand_address_range("inverter-1.local, 10.0.0.1") == [
            "inverter-1.local",
            "10.0.0.1",
        ]

    def test_too_large(self):
        with pytest.raises(ConfigError, match="too large"):
            expand_address_range("10.0.0.0/8")

    @pytest.mark.parametrize("token", ["0.0.0.0/0", "0.0.0.0"])
    def test_local_subnets(self, monkeypatch, token):
        interfaces = {
            "lo": [snicaddr(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
            "eth0": [
                snicaddr(socket.AF_INET, "192.168.7.20", "255.255.255.252", None, None),
                snicaddr(socket.AF_INET6, "fe80::1", "ffff:ffff:ffff:ffff::", None, None),
            ],
            "wlan0": [snicaddr(socket.AF_INET, "169.254.3.3", "255.255.0.0", None, None)],
        }
        monkeypatch.setattr(address_range.psutil, "net_if_addrs", lambda: interfaces)

        assert expand_address_range(token) == ["192.168.7.21", "192.168.7.22"]

    def test_wide_local_interface_limited_to_its_slash_16(self, monkeypatch):
        interfaces = {
            "eth0": [snicaddr(socket.AF_INET, "192.168.1.5", "255.255.255.0", None, None)],
            "docker0": [snicaddr(socket.AF_INET, "10.1.2.3", "255.0.0.0", None, None)],
        }
        monkeypatch.setattr(address_range.psutil, "net_if_addrs", lambda: interfaces)

        hosts = expand_address_range("0.0.0.0/0")

        assert len(hosts) == 254 + 65534
        assert hosts[0] == "192.168.1.1"
        assert hosts[253] == "192.168.1.254"
        assert hosts[254] == "10.1.0.1"
        assert hosts[-1] == "10.1.255.254"


class TestExpandUnitIds:

    def test_empty_means_default(self):
        assert expand_unit_ids("") is None
        assert expand_unit_ids(None) is None

    def test_single(self):
        assert expand_unit_ids("1") == [1]

    def test_range(self):
        assert expand_unit_ids("1-4") == [1, 2, 3, 4]

    def test_mixed_sorted_unique(self):
        assert expand_unit_ids("10-12, 1, 5, 11") == [1, 5, 10, 11, 12]

    def test_ignores_bad_parts(self):
        assert expand_unit_ids("1, x, 3-y, 7") == [1, 7]

    def test_overlapping_parts(self):
        assert expand_unit_ids("5,1,5-7") == [1, 5, 6, 7]


class TestDefaultUnitIds:

    def test_priority_first(self):
        ids = default_unit_ids(502)

        assert ids[:7] == [1, 126, 2, 3, 4, 100, 200]
        assert len(ids) == 247
        assert len(set(ids)) == 247

    def test_conext_gateway(self):
        ids = default_unit_ids(503)

        assert ids[0] == 10
        assert ids[25] == 35
        assert ids[-3:] == [1, 2, 201]
