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
"""Models of the Onionoo "details" document: the consensus as a whole and
each relay in it.

Only the fields the synchronization engine normalizes or compares are
modeled as attributes. Every field of the original record, known or not, is
kept in |raw| so that nothing published by the feed is lost.
"""
import datetime
import json
from typing import Any, Dict, List, Optional, Union

import attr

from torhistory.common import str_field_utils

# Fields stored in their own columns or dimension tables rather than in the
# relay version payload.
NORMALIZED_FIELDS = frozenset(
    [
        "fingerprint",
        "nickname",
        "country",
        "country_name",
        "region_name",
        "city_name",
        "platform",
        "version",
        "contact",
        "last_changed_address_or_port",
        "first_seen",
        "flags",
        "exit_policy",
        "exit_policy_summary",
        "exit_policy_v6_summary",
    ]
)


@attr.s(frozen=True, kw_only=True)
class RelayDetails:
    """A single relay as published in a consensus document."""

    fingerprint: str = attr.ib(validator=attr.validators.instance_of(str))
    nickname: Optional[str] = attr.ib(default=None)

    or_addresses: List[str] = attr.ib(factory=list)
    exit_addresses: List[str] = attr.ib(factory=list)
    dir_address: Optional[str] = attr.ib(default=None)

    last_seen: Optional[datetime.datetime] = attr.ib(default=None)
    last_changed_address_or_port: Optional[datetime.datetime] = attr.ib(default=None)
    first_seen: Optional[datetime.datetime] = attr.ib(default=None)

    flags: Optional[List[str]] = attr.ib(default=None)

    country: Optional[str] = attr.ib(default=None)
    country_name: Optional[str] = attr.ib(default=None)
    region_name: Optional[str] = attr.ib(default=None)
    city_name: Optional[str] = attr.ib(default=None)

    platform: Optional[str] = attr.ib(default=None)
    version: Optional[str] = attr.ib(default=None)
    contact: Optional[str] = attr.ib(default=None)

    exit_policy: Optional[List[str]] = attr.ib(default=None)
    exit_policy_summary: Optional[Dict[str, Any]] = attr.ib(default=None)
    exit_policy_v6_summary: Optional[Dict[str, Any]] = attr.ib(default=None)

    raw: Dict[str, Any] = attr.ib(factory=dict, repr=False, eq=False)

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "RelayDetails":
        """Builds a RelayDetails from one entry of the `relays` array.

        Raises ValueError if the entry has no fingerprint or a field has an
        unexpected type.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Expected relay entry to be an object, found {type(raw)}")
        fingerprint = str_field_utils.normalize_optional_str(raw.get("fingerprint"))
        if fingerprint is None:
            raise ValueError(f"Relay entry has no fingerprint: {raw}")

        country = str_field_utils.normalize_optional_str(raw.get("country"))
        return cls(
            fingerprint=fingerprint.upper(),
            nickname=str_field_utils.normalize_optional_str(raw.get("nickname")),
            or_addresses=_list_of_str(raw, "or_addresses"),
            exit_addresses=_list_of_str(raw, "exit_addresses"),
            dir_address=str_field_utils.normalize_optional_str(raw.get("dir_address")),
            last_seen=str_field_utils.parse_onionoo_datetime(raw.get("last_seen")),
            last_changed_address_or_port=str_field_utils.parse_onionoo_datetime(
                raw.get("last_changed_address_or_port")
            ),
            first_seen=str_field_utils.parse_onionoo_datetime(raw.get("first_seen")),
            flags=_list_of_str(raw, "flags") if "flags" in raw else None,
            country=country.lower() if country else None,
            country_name=str_field_utils.normalize_optional_str(
                raw.get("country_name")
            ),
            region_name=str_field_utils.normalize_optional_str(raw.get("region_name")),
            city_name=str_field_utils.normalize_optional_str(raw.get("city_name")),
            platform=str_field_utils.normalize_optional_str(raw.get("platform")),
            version=str_field_utils.normalize_optional_str(raw.get("version")),
            contact=str_field_utils.normalize_optional_str(raw.get("contact")),
            exit_policy=_list_of_str(raw, "exit_policy") or None,
            exit_policy_summary=_optional_dict(raw, "exit_policy_summary"),
            exit_policy_v6_summary=_optional_dict(raw, "exit_policy_v6_summary"),
            raw=dict(raw),
        )

    def to_payload(self) -> Dict[str, Any]:
        """Returns the fields of the original record that are not stored in a
        column or dimension of their own."""
        return {
            key: value
            for key, value in self.raw.items()
            if key not in NORMALIZED_FIELDS
        }


@attr.s(frozen=True, kw_only=True)
class ConsensusDocument:
    """A decoded Onionoo details document."""

    version: Optional[str] = attr.ib(default=None)
    build_revision: Optional[str] = attr.ib(default=None)
    relays_published: Optional[datetime.datetime] = attr.ib(default=None)
    bridges_published: Optional[datetime.datetime] = attr.ib(default=None)
    relays: List[RelayDetails] = attr.ib(factory=list)
    bridge_count: int = attr.ib(default=0)

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "ConsensusDocument":
        try:
            document = json.loads(data)
        except ValueError as e:
            raise ValueError(f"Consensus is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise ValueError("Expected consensus to contain a top-level object")

        relays = document.get("relays") or []
        if not isinstance(relays, list):
            raise ValueError("Expected [relays] to be a list")
        return cls(
            version=str_field_utils.normalize_optional_str(document.get("version")),
            build_revision=str_field_utils.normalize_optional_str(
                document.get("build_revision")
            ),
            relays_published=str_field_utils.parse_onionoo_datetime(
                document.get("relays_published")
            ),
            bridges_published=str_field_utils.parse_onionoo_datetime(
                document.get("bridges_published")
            ),
            relays=[RelayDetails.from_json(relay) for relay in relays],
            bridge_count=len(document.get("bridges") or []),
        )


def _list_of_str(raw: Dict[str, Any], field: str) -> List[str]:
    value = raw.get(field)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"Expected [{field}] to be a list of strings, found: {value}")
    return list(value)


def _optional_dict(raw: Dict[str, Any], field: str) -> Optional[Dict[str, Any]]:
    value = raw.get(field)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"Expected [{field}] to be an object, found: {value}")
    return value
