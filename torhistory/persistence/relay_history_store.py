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
"""The relational store that the synchronization engine reads from and
writes to, along with the records exchanged with it.

The engine only depends on the primitives below. Implementations must raise
the errors defined in torhistory.persistence.errors: DuplicateValueError when
an insert violates a uniqueness constraint, MalformedValueError when a value
cannot be stored as given, and StoreError for any other failure.
"""
import abc
import datetime
from typing import Any, ContextManager, Dict, List, Optional

import attr

from torhistory.common.ip_address import AddressFamily, AddressRole
from torhistory.persistence.dimension_kind import DimensionKind


@attr.s(frozen=True, kw_only=True)
class NodeVersionSnapshot:
    """A stored relay version, with its dimension values resolved back to
    text so that it can be compared to an incoming relay record."""

    relay_version_id: int = attr.ib()
    fingerprint_id: int = attr.ib()
    fingerprint: str = attr.ib()

    nickname: Optional[str] = attr.ib(default=None)
    country_code: Optional[str] = attr.ib(default=None)
    region: Optional[str] = attr.ib(default=None)
    city: Optional[str] = attr.ib(default=None)
    platform: Optional[str] = attr.ib(default=None)
    version: Optional[str] = attr.ib(default=None)
    contact: Optional[str] = attr.ib(default=None)
    # Canonical JSON serializations
    exit_policy: Optional[str] = attr.ib(default=None)
    exit_policy_summary: Optional[str] = attr.ib(default=None)
    exit_policy_v6_summary: Optional[str] = attr.ib(default=None)

    last_changed_address_or_port: Optional[datetime.datetime] = attr.ib(default=None)
    first_seen: Optional[datetime.datetime] = attr.ib(default=None)

    record_time_inserted: datetime.datetime = attr.ib()
    record_last_seen: datetime.datetime = attr.ib()


@attr.s(frozen=True, kw_only=True)
class NewRelayVersion:
    """The row written when a relay's attributes change. The version is
    valid from |record_time_inserted|, which is also its last-seen time."""

    fingerprint_id: int = attr.ib()

    country_code: Optional[str] = attr.ib(default=None)
    region_id: Optional[int] = attr.ib(default=None)
    city_id: Optional[int] = attr.ib(default=None)
    platform_id: Optional[int] = attr.ib(default=None)
    version_id: Optional[int] = attr.ib(default=None)
    contact_id: Optional[int] = attr.ib(default=None)
    exit_policy_id: Optional[int] = attr.ib(default=None)
    exit_policy_summary_id: Optional[int] = attr.ib(default=None)
    exit_policy_v6_summary_id: Optional[int] = attr.ib(default=None)

    nickname: Optional[str] = attr.ib(default=None)
    last_changed_address_or_port: Optional[datetime.datetime] = attr.ib(default=None)
    first_seen: Optional[datetime.datetime] = attr.ib(default=None)
    flags: Optional[List[str]] = attr.ib(default=None)
    details: Optional[Dict[str, Any]] = attr.ib(default=None)

    record_time_inserted: datetime.datetime = attr.ib()


@attr.s(frozen=True, kw_only=True)
class AddressPresenceRecord:
    """A stored interval over which a relay advertised an address."""

    address_presence_id: int = attr.ib()
    fingerprint_id: int = attr.ib()
    address: str = attr.ib()
    port: Optional[int] = attr.ib(default=None)
    record_time_inserted: datetime.datetime = attr.ib()
    record_last_seen: datetime.datetime = attr.ib()


@attr.s(frozen=True, kw_only=True)
class ConsensusImportRecord:
    version: Optional[str] = attr.ib(default=None)
    build_revision: Optional[str] = attr.ib(default=None)
    relays_published: Optional[datetime.datetime] = attr.ib(default=None)
    bridges_published: Optional[datetime.datetime] = attr.ib(default=None)
    relay_count: int = attr.ib(default=0)
    acquisition_timestamp: datetime.datetime = attr.ib()


class RelayHistoryStore(abc.ABC):
    """Primitives for reading and writing relay history."""

    @abc.abstractmethod
    def transaction(self) -> ContextManager[None]:
        """Returns a context manager that commits all writes made within it on
        success and rolls all of them back if an exception is raised."""

    # Dimensions

    @abc.abstractmethod
    def load_dimension_values(self, kind: DimensionKind) -> Dict[str, Any]:
        """Returns every stored value of |kind| mapped to its identifier."""

    @abc.abstractmethod
    def insert_dimension_value(self, kind: DimensionKind, value: str) -> int:
        """Inserts |value| into the table of |kind| and returns its new
        identifier. Not valid for countries, see insert_country."""

    @abc.abstractmethod
    def get_dimension_id(self, kind: DimensionKind, value: str) -> Optional[Any]:
        """Returns the identifier of the stored |value| of |kind|, or None."""

    @abc.abstractmethod
    def insert_country(self, country_code: str, country_name: Optional[str]) -> str:
        """Inserts a country and returns its identifier, the code itself."""

    # Relay versions

    @abc.abstractmethod
    def load_latest_relay_versions(
        self, reference_instant: datetime.datetime
    ) -> List[NodeVersionSnapshot]:
        """Returns, for every relay, the version with the latest
        record_last_seen that is not after |reference_instant|."""

    @abc.abstractmethod
    def insert_relay_version(self, relay_version: NewRelayVersion) -> int:
        """Inserts a new relay version and returns its identifier."""

    @abc.abstractmethod
    def get_relay_version_id(
        self, fingerprint_id: int, record_time_inserted: datetime.datetime
    ) -> Optional[int]:
        """Returns the identifier of the relay version inserted at
        |record_time_inserted| for the given relay, or None."""

    @abc.abstractmethod
    def extend_relay_version(
        self, relay_version_id: int, record_last_seen: datetime.datetime
    ) -> None:
        """Moves the last-seen time of a relay version forward to
        |record_last_seen|. Never moves it backwards."""

    # Address presence

    @abc.abstractmethod
    def load_latest_address_presences(
        self,
        role: AddressRole,
        family: AddressFamily,
        reference_instant: datetime.datetime,
    ) -> List[AddressPresenceRecord]:
        """Returns, for every relay, the address rows of the given role and
        family whose record_last_seen is that relay's latest one not after
        |reference_instant|."""

    @abc.abstractmethod
    def insert_address_presence(
        self,
        role: AddressRole,
        family: AddressFamily,
        fingerprint_id: int,
        address: str,
        port: Optional[int],
        record_time_inserted: datetime.datetime,
    ) -> int:
        """Inserts a new address presence row and returns its identifier."""

    @abc.abstractmethod
    def get_address_presence_id(
        self,
        role: AddressRole,
        family: AddressFamily,
        fingerprint_id: int,
        address: str,
        port: Optional[int],
        record_time_inserted: datetime.datetime,
    ) -> Optional[int]:
        """Returns the identifier of the address presence row inserted at
        |record_time_inserted| for the given relay and address, or None."""

    @abc.abstractmethod
    def extend_address_presence(
        self,
        role: AddressRole,
        family: AddressFamily,
        address_presence_id: int,
        record_last_seen: datetime.datetime,
    ) -> None:
        """Moves the last-seen time of an address presence row forward to
        |record_last_seen|. Never moves it backwards."""

    # Import log

    @abc.abstractmethod
    def record_consensus_import(self, consensus_import: ConsensusImportRecord) -> None:
        """Records that a consensus document was imported."""
