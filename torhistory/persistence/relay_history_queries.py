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
"""Read-only queries over the stored relay history.

The "current" version of a relay is the one with its latest
record_last_seen. Queries by country, address or contact return the ids of
current versions only; use get_relay_versions_by_ids to load them.
"""
import datetime
import json
import re
from typing import Any, Dict, List, Optional

import attr
from sqlalchemy import and_, func
from sqlalchemy.orm import Query, Session

from torhistory.common.ip_address import AddressRole, normalize_ip_address
from torhistory.persistence.database import schema
from torhistory.persistence.database.sqlalchemy_relay_history_store import (
    get_address_presence_table,
)

_COUNTRY_CODE_REGEX = re.compile(r"^[a-z][a-z]$")


@attr.s(frozen=True, kw_only=True)
class RelayVersionView:
    """A stored relay version, with its dimension values resolved."""

    relay_version_id: int = attr.ib()
    fingerprint: str = attr.ib()
    nickname: Optional[str] = attr.ib(default=None)
    country_code: Optional[str] = attr.ib(default=None)
    country_name: Optional[str] = attr.ib(default=None)
    region: Optional[str] = attr.ib(default=None)
    city: Optional[str] = attr.ib(default=None)
    platform: Optional[str] = attr.ib(default=None)
    version: Optional[str] = attr.ib(default=None)
    contact: Optional[str] = attr.ib(default=None)
    exit_policy: Optional[List[str]] = attr.ib(default=None)
    exit_policy_summary: Optional[Dict[str, Any]] = attr.ib(default=None)
    exit_policy_v6_summary: Optional[Dict[str, Any]] = attr.ib(default=None)
    last_changed_address_or_port: Optional[datetime.datetime] = attr.ib(default=None)
    first_seen: Optional[datetime.datetime] = attr.ib(default=None)
    flags: Optional[List[str]] = attr.ib(default=None)
    details: Optional[Dict[str, Any]] = attr.ib(default=None)
    record_time_inserted: datetime.datetime = attr.ib()
    record_last_seen: datetime.datetime = attr.ib()

    @classmethod
    def from_schema_object(
        cls, relay_version: schema.RelayVersion
    ) -> "RelayVersionView":
        return cls(
            relay_version_id=relay_version.relay_version_id,
            fingerprint=relay_version.node_fingerprint.value,
            nickname=relay_version.nickname,
            country_code=relay_version.country_code,
            country_name=_value(relay_version.country, "country_name"),
            region=_value(relay_version.region),
            city=_value(relay_version.city),
            platform=_value(relay_version.platform),
            version=_value(relay_version.software_version),
            contact=_value(relay_version.contact),
            exit_policy=_json_value(relay_version.exit_policy),
            exit_policy_summary=_json_value(relay_version.exit_policy_summary),
            exit_policy_v6_summary=_json_value(relay_version.exit_policy_v6_summary),
            last_changed_address_or_port=relay_version.last_changed_address_or_port,
            first_seen=relay_version.first_seen,
            flags=relay_version.flags,
            details=relay_version.details,
            record_time_inserted=relay_version.record_time_inserted,
            record_last_seen=relay_version.record_last_seen,
        )

    def to_serializable(self) -> Dict[str, Any]:
        """Returns a JSON-serializable dict of this view."""
        return {
            name: value.isoformat(sep=" ")
            if isinstance(value, datetime.datetime)
            else value
            for name, value in attr.asdict(self).items()
        }


def _value(entity: Optional[Any], column: str = "value") -> Optional[Any]:
    return getattr(entity, column) if entity is not None else None


def _json_value(entity: Optional[Any]) -> Optional[Any]:
    value = _value(entity)
    return json.loads(value) if value is not None else None


def _current_relay_version_ids(session: Session) -> Query:
    version = schema.RelayVersion
    latest = (
        session.query(
            version.fingerprint_id.label("fingerprint_id"),
            func.max(version.record_last_seen).label("record_last_seen"),
        )
        .group_by(version.fingerprint_id)
        .subquery()
    )
    return session.query(version.relay_version_id).join(
        latest,
        and_(
            version.fingerprint_id == latest.c.fingerprint_id,
            version.record_last_seen == latest.c.record_last_seen,
        ),
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _ids(query: Query) -> List[int]:
    return [
        relay_version_id
        for (relay_version_id,) in query.order_by(
            schema.RelayVersion.relay_version_id
        )
    ]


def get_current_relay_version_ids_by_country_code(
    session: Session, country_code: str
) -> List[int]:
    """Returns the ids of the current versions of relays located in the
    country |country_code|, a lower-case two-letter code.

    Raises ValueError if |country_code| is not a valid code.
    """
    if not _COUNTRY_CODE_REGEX.match(country_code):
        raise ValueError(f"Invalid country code [{country_code}]")
    return _ids(
        _current_relay_version_ids(session).filter(
            schema.RelayVersion.country_code == country_code
        )
    )


def get_current_relay_version_ids_by_ip(session: Session, ip: str) -> List[int]:
    """Returns the ids of the current versions of relays that ever advertised
    |ip|, in any role. Returns no ids if |ip| is not a valid IP address."""
    try:
        address, family = normalize_ip_address(ip)
    except ValueError:
        return []

    fingerprint_ids = set()
    for role in AddressRole:
        table = get_address_presence_table(role, family)
        fingerprint_ids.update(
            fingerprint_id
            for (fingerprint_id,) in session.query(table.fingerprint_id)
            .filter(table.address == address)
            .distinct()
        )
    if not fingerprint_ids:
        return []
    return _ids(
        _current_relay_version_ids(session).filter(
            schema.RelayVersion.fingerprint_id.in_(fingerprint_ids)
        )
    )


def get_current_relay_version_ids_by_contact(
    session: Session, contact_substring: str
) -> List[int]:
    """Returns the ids of the current versions of relays whose contact
    information contains |contact_substring|, ignoring case."""
    return _ids(
        _current_relay_version_ids(session)
        .join(
            schema.Contact,
            schema.RelayVersion.contact_id == schema.Contact.contact_id,
        )
        .filter(
            schema.Contact.value.ilike(
                f"%{_escape_like(contact_substring)}%", escape="\\"
            )
        )
    )


def get_relay_versions_by_ids(
    session: Session, relay_version_ids: List[int]
) -> List[RelayVersionView]:
    if not relay_version_ids:
        return []
    relay_versions = (
        session.query(schema.RelayVersion)
        .filter(schema.RelayVersion.relay_version_id.in_(relay_version_ids))
        .order_by(schema.RelayVersion.relay_version_id)
        .all()
    )
    return [RelayVersionView.from_schema_object(rv) for rv in relay_versions]


def get_relay_version_at(
    session: Session, fingerprint: str, at: datetime.datetime
) -> Optional[RelayVersionView]:
    """Returns the version of the relay |fingerprint| that was valid at |at|:
    the one most recently inserted at or before |at|. Returns None if the relay
    was not known yet."""
    relay_version = (
        session.query(schema.RelayVersion)
        .join(
            schema.NodeFingerprint,
            schema.RelayVersion.fingerprint_id
            == schema.NodeFingerprint.fingerprint_id,
        )
        .filter(
            schema.NodeFingerprint.value_digest
            == schema.value_digest(fingerprint.upper()),
            schema.RelayVersion.record_time_inserted <= at,
        )
        .order_by(schema.RelayVersion.record_time_inserted.desc())
        .first()
    )
    if relay_version is None:
        return None
    return RelayVersionView.from_schema_object(relay_version)
