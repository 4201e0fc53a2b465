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
"""Indexes of the addresses each relay advertised in its most recent stored
snapshot, one per address role and family."""
import datetime
import logging
import threading
from typing import Dict, Iterable, Optional

from torhistory.common.ip_address import AddressFamily, AddressRole
from torhistory.persistence.relay_history_store import (
    AddressPresenceRecord,
    RelayHistoryStore,
)


class AddressPresenceIndex:
    """Maps fingerprint id -> canonical address -> latest presence record.

    Keyed by address only: the port of a record is compared by the caller
    after a hit. Addresses must be in canonical form, see
    torhistory.common.ip_address.normalize_ip_address.
    """

    def __init__(
        self,
        role: AddressRole,
        family: AddressFamily,
        records: Iterable[AddressPresenceRecord] = (),
    ):
        self.role = role
        self.family = family
        self._lock = threading.Lock()
        self._by_node: Dict[int, Dict[str, AddressPresenceRecord]] = {}
        for record in records:
            self._by_node.setdefault(record.fingerprint_id, {})[record.address] = record

    def lookup(self, fingerprint_id: int) -> Dict[str, AddressPresenceRecord]:
        return dict(self._by_node.get(fingerprint_id, {}))

    def lookup_address(
        self, fingerprint_id: int, address: str
    ) -> Optional[AddressPresenceRecord]:
        return self._by_node.get(fingerprint_id, {}).get(address)

    def record(self, record: AddressPresenceRecord) -> None:
        """Stores |record| as the latest presence of its address."""
        with self._lock:
            self._by_node.setdefault(record.fingerprint_id, {})[record.address] = record

    def __len__(self) -> int:
        return sum(len(addresses) for addresses in self._by_node.values())


class AddressPresenceIndexes:
    """The six address presence indexes of a synchronization run."""

    def __init__(self, indexes: Iterable[AddressPresenceIndex]):
        self._indexes = {(index.role, index.family): index for index in indexes}
        for role in AddressRole:
            for family in AddressFamily:
                if (role, family) not in self._indexes:
                    self._indexes[(role, family)] = AddressPresenceIndex(role, family)

    @classmethod
    def build(
        cls, store: RelayHistoryStore, reference_instant: datetime.datetime
    ) -> "AddressPresenceIndexes":
        indexes = []
        for role in AddressRole:
            for family in AddressFamily:
                index = AddressPresenceIndex(
                    role,
                    family,
                    store.load_latest_address_presences(
                        role, family, reference_instant
                    ),
                )
                logging.info(
                    "Loaded [%d] latest [%s %s] addresses",
                    len(index),
                    role.value,
                    family.value,
                )
                indexes.append(index)
        return cls(indexes)

    def get(self, role: AddressRole, family: AddressFamily) -> AddressPresenceIndex:
        return self._indexes[(role, family)]
