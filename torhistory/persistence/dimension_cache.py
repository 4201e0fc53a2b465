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
"""Caches the identifiers of dimension values for the duration of a
synchronization run.

Every dimension kind has its own cache, pre-loaded from the store. A value
missing from the cache is inserted in its own short transaction. If the
insert conflicts with a row written by someone else since the cache was
loaded, the existing identifier is looked up instead. Any other store failure
is fatal and propagates to the caller.
"""
import logging
import threading
from typing import Any, Dict, Optional

from torhistory.persistence.dimension_kind import DimensionKind
from torhistory.persistence.errors import DuplicateValueError, StoreError
from torhistory.persistence.relay_history_store import RelayHistoryStore


class DimensionCache:
    """Maps (kind, text) pairs to store identifiers.

    Countries are special: resolve() only reads them, and a country is only
    created by register_country(), which also records its name. The
    identifier of a country is its lower-cased code.
    """

    def __init__(self, store: RelayHistoryStore):
        self._store = store
        self._ids: Dict[DimensionKind, Dict[str, Any]] = {}
        self._locks: Dict[DimensionKind, threading.Lock] = {
            kind: threading.Lock() for kind in DimensionKind
        }

    @classmethod
    def build(cls, store: RelayHistoryStore) -> "DimensionCache":
        """Returns a cache pre-loaded with every dimension value in |store|."""
        cache = cls(store)
        for kind in DimensionKind:
            cache._ids[kind] = dict(store.load_dimension_values(kind))
            logging.info(
                "Loaded [%d] cached values of dimension [%s]",
                len(cache._ids[kind]),
                kind.value,
            )
        return cache

    def cached_count(self, kind: DimensionKind) -> int:
        return len(self._ids.get(kind, {}))

    def resolve(self, kind: DimensionKind, text: Optional[str]) -> Optional[Any]:
        """Returns the identifier of |text| within |kind|, inserting it if it
        has never been seen. Blank values have no identifier.

        For countries, returns the identifier only if the country has already
        been registered.
        """
        if text is None or not text.strip():
            return None
        if kind is DimensionKind.COUNTRY:
            return self._ids.setdefault(kind, {}).get(text.lower())

        lock = self._locks[kind]
        with lock:
            cached = self._ids.setdefault(kind, {})
            if text in cached:
                return cached[text]

            try:
                with self._store.transaction():
                    dimension_id = self._store.insert_dimension_value(kind, text)
            except DuplicateValueError:
                logging.debug(
                    "Dimension [%s] value [%s] inserted concurrently, looking it up",
                    kind.value,
                    text,
                )
                dimension_id = self._lookup_existing(kind, text)
            cached[text] = dimension_id
            return dimension_id

    def register_country(self, code: str, name: Optional[str]) -> str:
        """Creates the country |code| with its human-readable |name| if it is
        not already known, and returns its identifier."""
        country_id = code.strip().lower()
        if not country_id:
            raise ValueError("Country code must not be empty")

        lock = self._locks[DimensionKind.COUNTRY]
        with lock:
            cached = self._ids.setdefault(DimensionKind.COUNTRY, {})
            if country_id in cached:
                return cached[country_id]

            try:
                with self._store.transaction():
                    self._store.insert_country(country_id, name)
            except DuplicateValueError:
                self._lookup_existing(DimensionKind.COUNTRY, country_id)
            logging.info("Registered country [%s] (%s)", country_id, name)
            cached[country_id] = country_id
            return country_id

    def _lookup_existing(self, kind: DimensionKind, text: str) -> Any:
        dimension_id = self._store.get_dimension_id(kind, text)
        if dimension_id is None:
            raise StoreError(
                f"lookup of {kind.value} [{text}] after duplicate insert",
                LookupError("value reported as duplicate was not found"),
            )
        return dimension_id
