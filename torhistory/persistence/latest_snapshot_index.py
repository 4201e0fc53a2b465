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
"""Index of the most recent stored version of every relay as of the
reference instant of a synchronization run."""
import datetime
import logging
from typing import Dict, Iterable, Optional

from torhistory.persistence.relay_history_store import (
    NodeVersionSnapshot,
    RelayHistoryStore,
)


class LatestSnapshotIndex:
    """Maps relay fingerprints to the stored version with the latest
    record_last_seen not after the reference instant.

    Read-only once built. Versions written during the run are not added, so a
    lookup always reflects the state of the store when the run started.
    """

    def __init__(self, snapshots: Iterable[NodeVersionSnapshot]):
        self._by_fingerprint: Dict[str, NodeVersionSnapshot] = {}
        for snapshot in snapshots:
            existing = self._by_fingerprint.get(snapshot.fingerprint)
            if existing is not None:
                logging.warning(
                    "Found multiple latest versions for relay [%s]: [%s] and [%s], "
                    "using the most recently inserted one",
                    snapshot.fingerprint,
                    existing.relay_version_id,
                    snapshot.relay_version_id,
                )
                if existing.record_time_inserted > snapshot.record_time_inserted:
                    continue
            self._by_fingerprint[snapshot.fingerprint] = snapshot

    @classmethod
    def build(
        cls, store: RelayHistoryStore, reference_instant: datetime.datetime
    ) -> "LatestSnapshotIndex":
        index = cls(store.load_latest_relay_versions(reference_instant))
        logging.info(
            "Loaded latest versions of [%d] relays as of [%s]",
            len(index),
            reference_instant,
        )
        return index

    def lookup(self, fingerprint: str) -> Optional[NodeVersionSnapshot]:
        return self._by_fingerprint.get(fingerprint)

    def __len__(self) -> int:
        return len(self._by_fingerprint)
