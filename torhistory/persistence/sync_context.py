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
"""Per-run state of a synchronization."""
import datetime
from typing import Set

import attr

from torhistory.persistence.address_presence_index import AddressPresenceIndexes
from torhistory.persistence.dimension_cache import DimensionCache
from torhistory.persistence.latest_snapshot_index import LatestSnapshotIndex
from torhistory.persistence.relay_history_store import RelayHistoryStore


@attr.s(kw_only=True)
class SyncContext:
    """Caches and indexes shared by every relay reconciled in one run.

    The reference instant is fixed when the context is built and used as the
    timestamp of every row written or extended during the run.
    """

    reference_instant: datetime.datetime = attr.ib()
    dimension_cache: DimensionCache = attr.ib()
    latest_snapshots: LatestSnapshotIndex = attr.ib()
    address_presences: AddressPresenceIndexes = attr.ib()
    # Fingerprints already reconciled in this run
    reconciled_fingerprints: Set[str] = attr.ib(factory=set)

    @classmethod
    def build(
        cls, store: RelayHistoryStore, reference_instant: datetime.datetime
    ) -> "SyncContext":
        return cls(
            reference_instant=reference_instant,
            dimension_cache=DimensionCache.build(store),
            latest_snapshots=LatestSnapshotIndex.build(store, reference_instant),
            address_presences=AddressPresenceIndexes.build(store, reference_instant),
        )
