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
"""Helpers for parsing and normalizing the network addresses reported for a
relay.

Onion-routing and directory addresses are reported as `address:port`, with
IPv6 addresses wrapped in brackets (`[2001:db8::1]:9001`). Exit addresses are
reported as a bare address. All addresses are normalized to a single textual
form so that equivalent spellings of an IPv6 address map to the same key.
"""
import ipaddress
from enum import Enum
from typing import Optional, Tuple

import attr


class AddressRole(Enum):
    """The role in which a relay advertised an address."""

    OR = "or"
    EXIT = "exit"
    DIR = "dir"

    @property
    def has_port(self) -> bool:
        return self is not AddressRole.EXIT


class AddressFamily(Enum):
    V4 = "v4"
    V6 = "v6"


@attr.s(frozen=True)
class RelayAddress:
    """A single parsed address, in canonical form."""

    family: AddressFamily = attr.ib()
    address: str = attr.ib()
    port: Optional[int] = attr.ib(default=None)


def normalize_ip_address(address: str) -> Tuple[str, AddressFamily]:
    """Returns the canonical text of the IP address |address| and its family.

    Raises ValueError if |address| is not a valid IPv4 or IPv6 address.
    """
    parsed = ipaddress.ip_address(address.strip().strip("[]"))
    family = AddressFamily.V6 if parsed.version == 6 else AddressFamily.V4
    return str(parsed), family


def _parse_port(port: str, raw: str) -> int:
    try:
        parsed = int(port)
    except ValueError as e:
        raise ValueError(f"Invalid port in address [{raw}]") from e
    if not 0 <= parsed <= 65535:
        raise ValueError(f"Port out of range in address [{raw}]")
    return parsed


def parse_relay_address(raw: str, role: AddressRole) -> RelayAddress:
    """Parses a single address string reported for |role|.

    Raises ValueError if the address or its port cannot be parsed.
    """
    raw = raw.strip()
    if not role.has_port:
        address, family = normalize_ip_address(raw)
        return RelayAddress(family=family, address=address)

    if raw.startswith("["):
        host, sep, port = raw[1:].partition("]:")
        if not sep:
            raise ValueError(f"Malformed IPv6 address [{raw}]")
    else:
        host, sep, port = raw.rpartition(":")
        if not sep:
            raise ValueError(f"Missing port in address [{raw}]")
    address, family = normalize_ip_address(host)
    return RelayAddress(family=family, address=address, port=_parse_port(port, raw))
