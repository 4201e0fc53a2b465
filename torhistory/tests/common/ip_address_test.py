# tor-history - a historical record of the Tor relay roster
# Copyright (C) 2021 tor-history authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
# =============================================================================
"""Tests for ip_address.py."""
import unittest

from torhistory.common.ip_address import (
    AddressFamily,
    AddressRole,
    RelayAddress,
    normalize_ip_address,
    parse_relay_address,
)


class NormalizeIpAddressTest(unittest.TestCase):
    """Tests for normalize_ip_address."""

    def test_ipv4(self) -> None:
        self.assertEqual(
            ("128.31.0.34", AddressFamily.V4), normalize_ip_address(" 128.31.0.34 ")
        )

    def test_ipv6_spellings_are_canonical(self) -> None:
        self.assertEqual(
            ("2001:db8::1", AddressFamily.V6),
            normalize_ip_address("2001:DB8:0:0:0:0:0:1"),
        )
        self.assertEqual(
            ("2001:db8::1", AddressFamily.V6), normalize_ip_address("[2001:db8::1]")
        )

    def test_invalid(self) -> None:
        with self.assertRaises(ValueError):
            normalize_ip_address("not-an-address")
        with self.assertRaises(ValueError):
            normalize_ip_address("256.0.0.1")


class ParseRelayAddressTest(unittest.TestCase):
    """Tests for parse_relay_address."""

    def test_or_address_v4(self) -> None:
        self.assertEqual(
            RelayAddress(family=AddressFamily.V4, address="128.31.0.34", port=9101),
            parse_relay_address("128.31.0.34:9101", AddressRole.OR),
        )

    def test_or_address_v6(self) -> None:
        self.assertEqual(
            RelayAddress(family=AddressFamily.V6, address="2001:db8::1", port=9101),
            parse_relay_address("[2001:DB8:0:0::1]:9101", AddressRole.OR),
        )

    def test_exit_address_has_no_port(self) -> None:
        self.assertEqual(
            RelayAddress(family=AddressFamily.V4, address="10.0.0.1"),
            parse_relay_address("10.0.0.1", AddressRole.EXIT),
        )
        self.assertEqual(
            RelayAddress(family=AddressFamily.V6, address="2001:db8::2"),
            parse_relay_address("2001:db8:0::2", AddressRole.EXIT),
        )

    def test_port_bounds(self) -> None:
        self.assertEqual(
            0, parse_relay_address("10.0.0.1:0", AddressRole.DIR).port
        )
        self.assertEqual(
            65535, parse_relay_address("10.0.0.1:65535", AddressRole.DIR).port
        )
        with self.assertRaises(ValueError):
            parse_relay_address("10.0.0.1:65536", AddressRole.DIR)
        with self.assertRaises(ValueError):
            parse_relay_address("10.0.0.1:-1", AddressRole.DIR)

    def test_malformed(self) -> None:
        for raw in [
            "10.0.0.1",
            "10.0.0.1:http",
            "[2001:db8::1]",
            "[2001:db8::1:9001",
            "example.com:9001",
            "",
        ]:
            with self.assertRaises(ValueError, msg=raw):
                parse_relay_address(raw, AddressRole.OR)
