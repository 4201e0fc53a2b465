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
"""RelayHistoryStore backed by a SQLAlchemy session."""
import datetime
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type

import more_itertools
from sqlalchemy import and_, func
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from torhistory.common.ip_address import AddressFamily, AddressRole
from torhistory.persistence.database import schema
from torhistory.persistence.database.database_entity import DatabaseEntity
from torhistory.persistence.dimension_kind import DimensionKind
from torhistory.persistence.errors import (
    DuplicateValueError,
    MalformedValueError,
    StoreError,
)
from torhistory.persistence.relay_history_store import (
    AddressPresenceRecord,
    ConsensusImportRecord,
    NewRelayVersion,
    NodeVersionSnapshot,
    RelayHistoryStore,
)

_ADDRESS_PRESENCE_TABLES: Dict[Tuple[AddressRole, AddressFamily], Type[Any]] = {
    (AddressRole.OR, AddressFamily.V4): schema.OrAddressV4,
    (AddressRole.OR, AddressFamily.V6): schema.OrAddressV6,
    (AddressRole.EXIT, AddressFamily.V4): schema.ExitAddressV4,
    (AddressRole.EXIT, AddressFamily.V6): schema.ExitAddressV6,
    (AddressRole.DIR, AddressFamily.V4): schema.DirAddressV4,
    (AddressRole.DIR, AddressFamily.V6): schema.DirAddressV6,
}

# SQLSTATE for unique_violation in Postgres, error number for ER_DUP_ENTRY in
# MySQL.
_POSTGRES_UNIQUE_VIOLATION = "23505"
_MYSQL_DUPLICATE_ENTRY = 1062


def get_address_presence_table(role: AddressRole, family: AddressFamily) -> Type[Any]:
    return _ADDRESS_PRESENCE_TABLES[(role, family)]


def _is_unique_violation(error: IntegrityError) -> bool:
    orig = error.orig
    if getattr(orig, "pgcode", None) == _POSTGRES_UNIQUE_VIOLATION:
        return True
    args = getattr(orig, "args", ())
    if args and args[0] == _MYSQL_DUPLICATE_ENTRY:
        return True
    return "UNIQUE constraint failed" in str(orig)


@contextmanager
def _translate_errors(operation: str, table_name: str, value: Any) -> Iterator[None]:
    """Converts SQLAlchemy errors raised within the block into
    PersistenceErrors."""
    try:
        yield
    except IntegrityError as e:
        if _is_unique_violation(e):
            raise DuplicateValueError(table_name, value) from e
        raise StoreError(operation, e) from e
    except DataError as e:
        raise MalformedValueError(table_name, value, str(e.orig)) from e
    except SQLAlchemyError as e:
        raise StoreError(operation, e) from e


class SQLAlchemyRelayHistoryStore(RelayHistoryStore):
    """Reads and writes relay history through |session|.

    Inserts that may conflict with an existing row run in a SAVEPOINT, so a
    DuplicateValueError leaves the enclosing transaction usable.
    """

    def __init__(self, session: Session):
        self._session = session

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            with _translate_errors("commit", "", None):
                self._session.commit()
        except BaseException:
            self._session.rollback()
            raise

    def _insert(self, entity: DatabaseEntity, value: Any) -> None:
        table_name = entity.get_entity_name()
        with _translate_errors(f"insert into {table_name}", table_name, value):
            with self._session.begin_nested():
                self._session.add(entity)
                self._session.flush()

    # Dimensions

    def load_dimension_values(self, kind: DimensionKind) -> Dict[str, Any]:
        table = kind.schema_class
        with _translate_errors(f"load {kind.value}", table.get_entity_name(), None):
            if kind is DimensionKind.COUNTRY:
                return {
                    code: code
                    for (code,) in self._session.query(schema.Country.country_code)
                }
            return {
                value: dimension_id
                for value, dimension_id in self._session.query(
                    table.value, table.get_primary_key_column()
                )
            }

    def insert_dimension_value(self, kind: DimensionKind, value: str) -> int:
        if kind is DimensionKind.COUNTRY:
            raise ValueError("Countries must be registered through insert_country")
        table = kind.schema_class
        self._check_length(kind, value)
        entity = table(value=value, value_digest=schema.value_digest(value))
        self._insert(entity, value)
        return entity.get_id()

    def get_dimension_id(self, kind: DimensionKind, value: str) -> Optional[Any]:
        table = kind.schema_class
        with _translate_errors(f"lookup {kind.value}", table.get_entity_name(), value):
            if kind is DimensionKind.COUNTRY:
                ids = [
                    code
                    for (code,) in self._session.query(
                        schema.Country.country_code
                    ).filter(schema.Country.country_code == value)
                ]
            else:
                ids = [
                    dimension_id
                    for (dimension_id,) in self._session.query(
                        table.get_primary_key_column()
                    ).filter(table.value_digest == schema.value_digest(value))
                ]
        return _first_of(ids, f"{kind.value} [{value}]")

    def insert_country(self, country_code: str, country_name: Optional[str]) -> str:
        self._check_length(DimensionKind.COUNTRY, country_code)
        entity = schema.Country(country_code=country_code, country_name=country_name)
        self._insert(entity, country_code)
        return country_code

    @staticmethod
    def _check_length(kind: DimensionKind, value: str) -> None:
        max_length = kind.max_length
        if max_length is not None and len(value) > max_length:
            raise MalformedValueError(
                kind.schema_class.get_entity_name(),
                value,
                f"value of length {len(value)} exceeds maximum length {max_length}",
            )

    # Relay versions

    def load_latest_relay_versions(
        self, reference_instant: datetime.datetime
    ) -> List[NodeVersionSnapshot]:
        version = schema.RelayVersion
        latest = (
            self._session.query(
                version.fingerprint_id.label("fingerprint_id"),
                func.max(version.record_last_seen).label("record_last_seen"),
            )
            .filter(version.record_last_seen <= reference_instant)
            .group_by(version.fingerprint_id)
            .subquery()
        )
        query = (
            self._session.query(
                version,
                schema.NodeFingerprint.value,
                schema.Region.value,
                schema.City.value,
                schema.Platform.value,
                schema.SoftwareVersion.value,
                schema.Contact.value,
                schema.ExitPolicy.value,
                schema.ExitPolicySummary.value,
                schema.ExitPolicyV6Summary.value,
            )
            .select_from(version)
            .join(
                latest,
                and_(
                    version.fingerprint_id == latest.c.fingerprint_id,
                    version.record_last_seen == latest.c.record_last_seen,
                ),
            )
            .join(
                schema.NodeFingerprint,
                version.fingerprint_id == schema.NodeFingerprint.fingerprint_id,
            )
            .outerjoin(schema.Region, version.region_id == schema.Region.region_id)
            .outerjoin(schema.City, version.city_id == schema.City.city_id)
            .outerjoin(
                schema.Platform, version.platform_id == schema.Platform.platform_id
            )
            .outerjoin(
                schema.SoftwareVersion,
                version.version_id == schema.SoftwareVersion.version_id,
            )
            .outerjoin(schema.Contact, version.contact_id == schema.Contact.contact_id)
            .outerjoin(
                schema.ExitPolicy,
                version.exit_policy_id == schema.ExitPolicy.exit_policy_id,
            )
            .outerjoin(
                schema.ExitPolicySummary,
                version.exit_policy_summary_id
                == schema.ExitPolicySummary.exit_policy_summary_id,
            )
            .outerjoin(
                schema.ExitPolicyV6Summary,
                version.exit_policy_v6_summary_id
                == schema.ExitPolicyV6Summary.exit_policy_v6_summary_id,
            )
            .order_by(version.fingerprint_id, version.record_time_inserted)
        )
        with _translate_errors(
            "load latest relay versions", version.__tablename__, None
        ):
            rows = query.all()

        return [
            NodeVersionSnapshot(
                relay_version_id=row.relay_version_id,
                fingerprint_id=row.fingerprint_id,
                fingerprint=fingerprint,
                nickname=row.nickname,
                country_code=row.country_code,
                region=region,
                city=city,
                platform=platform,
                version=software_version,
                contact=contact,
                exit_policy=exit_policy,
                exit_policy_summary=exit_policy_summary,
                exit_policy_v6_summary=exit_policy_v6_summary,
                last_changed_address_or_port=row.last_changed_address_or_port,
                first_seen=row.first_seen,
                record_time_inserted=row.record_time_inserted,
                record_last_seen=row.record_last_seen,
            )
            for (
                row,
                fingerprint,
                region,
                city,
                platform,
                software_version,
                contact,
                exit_policy,
                exit_policy_summary,
                exit_policy_v6_summary,
            ) in rows
        ]

    def insert_relay_version(self, relay_version: NewRelayVersion) -> int:
        entity = schema.RelayVersion(
            fingerprint_id=relay_version.fingerprint_id,
            country_code=relay_version.country_code,
            region_id=relay_version.region_id,
            city_id=relay_version.city_id,
            platform_id=relay_version.platform_id,
            version_id=relay_version.version_id,
            contact_id=relay_version.contact_id,
            exit_policy_id=relay_version.exit_policy_id,
            exit_policy_summary_id=relay_version.exit_policy_summary_id,
            exit_policy_v6_summary_id=relay_version.exit_policy_v6_summary_id,
            nickname=relay_version.nickname,
            last_changed_address_or_port=relay_version.last_changed_address_or_port,
            first_seen=relay_version.first_seen,
            flags=relay_version.flags,
            details=relay_version.details,
            record_time_inserted=relay_version.record_time_inserted,
            record_last_seen=relay_version.record_time_inserted,
        )
        self._insert(
            entity,
            (relay_version.fingerprint_id, relay_version.record_time_inserted),
        )
        return entity.relay_version_id

    def get_relay_version_id(
        self, fingerprint_id: int, record_time_inserted: datetime.datetime
    ) -> Optional[int]:
        version = schema.RelayVersion
        key = (fingerprint_id, record_time_inserted)
        with _translate_errors("lookup relay version", version.__tablename__, key):
            ids = [
                relay_version_id
                for (relay_version_id,) in self._session.query(
                    version.relay_version_id
                ).filter(
                    version.fingerprint_id == fingerprint_id,
                    version.record_time_inserted == record_time_inserted,
                )
            ]
        return _first_of(ids, f"relay version {key}")

    def extend_relay_version(
        self, relay_version_id: int, record_last_seen: datetime.datetime
    ) -> None:
        version = schema.RelayVersion
        with _translate_errors(
            "extend relay version", version.__tablename__, relay_version_id
        ):
            self._session.query(version).filter(
                version.relay_version_id == relay_version_id,
                version.record_last_seen < record_last_seen,
            ).update(
                {version.record_last_seen: record_last_seen},
                synchronize_session=False,
            )

    # Address presence

    def load_latest_address_presences(
        self,
        role: AddressRole,
        family: AddressFamily,
        reference_instant: datetime.datetime,
    ) -> List[AddressPresenceRecord]:
        table = get_address_presence_table(role, family)
        latest = (
            self._session.query(
                table.fingerprint_id.label("fingerprint_id"),
                func.max(table.record_last_seen).label("record_last_seen"),
            )
            .filter(table.record_last_seen <= reference_instant)
            .group_by(table.fingerprint_id)
            .subquery()
        )
        query = (
            self._session.query(table)
            .join(
                latest,
                and_(
                    table.fingerprint_id == latest.c.fingerprint_id,
                    table.record_last_seen == latest.c.record_last_seen,
                ),
            )
            .order_by(table.fingerprint_id, table.address_presence_id)
        )
        with _translate_errors(
            f"load {table.__tablename__}", table.__tablename__, None
        ):
            rows = query.all()
        return [
            AddressPresenceRecord(
                address_presence_id=row.address_presence_id,
                fingerprint_id=row.fingerprint_id,
                address=row.address,
                port=row.port if role.has_port else None,
                record_time_inserted=row.record_time_inserted,
                record_last_seen=row.record_last_seen,
            )
            for row in rows
        ]

    def insert_address_presence(
        self,
        role: AddressRole,
        family: AddressFamily,
        fingerprint_id: int,
        address: str,
        port: Optional[int],
        record_time_inserted: datetime.datetime,
    ) -> int:
        table = get_address_presence_table(role, family)
        entity = table(
            fingerprint_id=fingerprint_id,
            address=address,
            record_time_inserted=record_time_inserted,
            record_last_seen=record_time_inserted,
        )
        if role.has_port:
            entity.port = port
        self._insert(entity, (fingerprint_id, address, port, record_time_inserted))
        return entity.address_presence_id

    def get_address_presence_id(
        self,
        role: AddressRole,
        family: AddressFamily,
        fingerprint_id: int,
        address: str,
        port: Optional[int],
        record_time_inserted: datetime.datetime,
    ) -> Optional[int]:
        table = get_address_presence_table(role, family)
        key = (fingerprint_id, address, port, record_time_inserted)
        query = self._session.query(table.address_presence_id).filter(
            table.fingerprint_id == fingerprint_id,
            table.address == address,
            table.record_time_inserted == record_time_inserted,
        )
        if role.has_port:
            query = query.filter(table.port == port)
        with _translate_errors(
            f"lookup {table.__tablename__}", table.__tablename__, key
        ):
            ids = [address_presence_id for (address_presence_id,) in query]
        return _first_of(ids, f"{table.__tablename__} {key}")

    def extend_address_presence(
        self,
        role: AddressRole,
        family: AddressFamily,
        address_presence_id: int,
        record_last_seen: datetime.datetime,
    ) -> None:
        table = get_address_presence_table(role, family)
        with _translate_errors(
            f"extend {table.__tablename__}", table.__tablename__, address_presence_id
        ):
            self._session.query(table).filter(
                table.address_presence_id == address_presence_id,
                table.record_last_seen < record_last_seen,
            ).update(
                {table.record_last_seen: record_last_seen},
                synchronize_session=False,
            )

    # Import log

    def record_consensus_import(self, consensus_import: ConsensusImportRecord) -> None:
        entity = schema.ConsensusImport(
            version=consensus_import.version,
            build_revision=consensus_import.build_revision,
            relays_published=consensus_import.relays_published,
            bridges_published=consensus_import.bridges_published,
            relay_count=consensus_import.relay_count,
            acquisition_timestamp=consensus_import.acquisition_timestamp,
        )
        self._insert(entity, consensus_import.acquisition_timestamp)


def _first_of(ids: List[Any], description: str) -> Optional[Any]:
    if len(ids) > 1:
        logging.warning(
            "Found [%d] rows for %s, using the first one", len(ids), description
        )
    return more_itertools.first(ids, None)
