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
"""Reconciles the relays of a consensus document with their stored history.

For every relay, the incoming record is compared to the latest stored version
of that relay as of the reference instant of the run, and one of the
following happens:

- CONFIRMED: nothing changed and the stored version was already seen at the
  reference instant. Nothing is written.
- EXTENDED: nothing changed. The last-seen time of the stored version is
  moved forward to the reference instant, and so is that of every address the
  relay still advertises with the same port. New addresses get new rows.
- SUPERSEDED: the relay is new or some attribute changed. A new version is
  written, valid from the reference instant, along with new rows for all of
  its addresses.

All writes for one relay happen in a single transaction. Dimension values are
resolved before that transaction starts.
"""
import datetime
import logging
from collections import Counter
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import attr

from torhistory.common.ip_address import AddressRole, RelayAddress, parse_relay_address
from torhistory.common.str_field_utils import canonical_json
from torhistory.ingest.models.relay_details import ConsensusDocument, RelayDetails
from torhistory.persistence import change_detector
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
from torhistory.persistence.sync_context import SyncContext


class ReconciliationOutcome(Enum):
    CONFIRMED = "confirmed"
    EXTENDED = "extended"
    SUPERSEDED = "superseded"
    # The relay appeared more than once in the same consensus
    SKIPPED = "skipped"


@attr.s
class SyncSummary:
    """Counts of reconciliation outcomes over a run."""

    reference_instant: datetime.datetime = attr.ib()
    outcomes: Counter = attr.ib(factory=Counter)

    def record(self, outcome: ReconciliationOutcome) -> None:
        self.outcomes[outcome] += 1

    def count(self, outcome: ReconciliationOutcome) -> int:
        return self.outcomes[outcome]

    @property
    def total(self) -> int:
        return sum(self.outcomes.values())


class RelayReconciler:
    """Writes the changes needed to bring the stored history of each relay up
    to date with an incoming record."""

    def __init__(self, store: RelayHistoryStore, context: SyncContext):
        self._store = store
        self._context = context

    @property
    def reference_instant(self) -> datetime.datetime:
        return self._context.reference_instant

    def reconcile(self, relay: RelayDetails) -> ReconciliationOutcome:
        """Reconciles a single relay. Raises a PersistenceError if the store
        fails, in which case none of the relay's writes are kept."""
        if relay.fingerprint in self._context.reconciled_fingerprints:
            logging.warning(
                "Relay [%s] appears more than once in the consensus, skipping",
                relay.fingerprint,
            )
            return ReconciliationOutcome.SKIPPED
        self._context.reconciled_fingerprints.add(relay.fingerprint)

        addresses = _parse_addresses(relay)
        prior = self._context.latest_snapshots.lookup(relay.fingerprint)

        if (
            prior is not None
            and change_detector.compare(relay, prior)
            is change_detector.ChangeVerdict.SAME
        ):
            return self._confirm_or_extend(prior, addresses)
        return self._supersede(relay, prior, addresses)

    def _confirm_or_extend(
        self,
        prior: NodeVersionSnapshot,
        addresses: List[Tuple[AddressRole, RelayAddress]],
    ) -> ReconciliationOutcome:
        if prior.record_last_seen >= self.reference_instant:
            logging.debug(
                "Relay [%s] already confirmed at [%s]",
                prior.fingerprint,
                self.reference_instant,
            )
            return ReconciliationOutcome.CONFIRMED

        with self._store.transaction():
            self._store.extend_relay_version(
                prior.relay_version_id, self.reference_instant
            )
            self._reconcile_addresses(prior.fingerprint_id, addresses)
        logging.debug(
            "Extended version [%s] of relay [%s]",
            prior.relay_version_id,
            prior.fingerprint,
        )
        return ReconciliationOutcome.EXTENDED

    def _supersede(
        self,
        relay: RelayDetails,
        prior: Optional[NodeVersionSnapshot],
        addresses: List[Tuple[AddressRole, RelayAddress]],
    ) -> ReconciliationOutcome:
        if prior is None:
            logging.debug("New relay [%s]", relay.fingerprint)
        else:
            logging.debug(
                "Relay [%s] changed: %s",
                relay.fingerprint,
                change_detector.changed_fields(relay, prior),
            )

        new_version = self._build_new_version(relay)
        with self._store.transaction():
            self._insert_relay_version(relay, new_version)
            self._reconcile_addresses(
                new_version.fingerprint_id, addresses, extend_existing=False
            )
        return ReconciliationOutcome.SUPERSEDED

    def _build_new_version(self, relay: RelayDetails) -> NewRelayVersion:
        cache = self._context.dimension_cache
        fingerprint_id = cache.resolve(DimensionKind.FINGERPRINT, relay.fingerprint)

        country_code = None
        if relay.country:
            country_code = cache.resolve(DimensionKind.COUNTRY, relay.country)
            if country_code is None:
                if relay.country_name is None:
                    logging.warning(
                        "Registering country [%s] without a name", relay.country
                    )
                country_code = cache.register_country(
                    relay.country, relay.country_name
                )

        return NewRelayVersion(
            fingerprint_id=fingerprint_id,
            country_code=country_code,
            region_id=cache.resolve(DimensionKind.REGION, relay.region_name),
            city_id=cache.resolve(DimensionKind.CITY, relay.city_name),
            platform_id=cache.resolve(DimensionKind.PLATFORM, relay.platform),
            version_id=cache.resolve(DimensionKind.VERSION, relay.version),
            contact_id=cache.resolve(DimensionKind.CONTACT, relay.contact),
            exit_policy_id=cache.resolve(
                DimensionKind.EXIT_POLICY, canonical_json(relay.exit_policy)
            ),
            exit_policy_summary_id=cache.resolve(
                DimensionKind.EXIT_POLICY_SUMMARY,
                canonical_json(relay.exit_policy_summary),
            ),
            exit_policy_v6_summary_id=cache.resolve(
                DimensionKind.EXIT_POLICY_V6_SUMMARY,
                canonical_json(relay.exit_policy_v6_summary),
            ),
            nickname=relay.nickname,
            last_changed_address_or_port=relay.last_changed_address_or_port,
            first_seen=relay.first_seen,
            flags=relay.flags,
            details=relay.to_payload(),
            record_time_inserted=self.reference_instant,
        )

    def _insert_relay_version(
        self, relay: RelayDetails, new_version: NewRelayVersion
    ) -> int:
        try:
            return self._store.insert_relay_version(new_version)
        except DuplicateValueError:
            relay_version_id = self._store.get_relay_version_id(
                new_version.fingerprint_id, new_version.record_time_inserted
            )
            if relay_version_id is None:
                raise StoreError(
                    f"lookup of relay version for [{relay.fingerprint}]",
                    LookupError("version reported as duplicate was not found"),
                ) from None
            logging.info(
                "Relay [%s] already has version [%s] inserted at [%s]",
                relay.fingerprint,
                relay_version_id,
                new_version.record_time_inserted,
            )
            return relay_version_id

    def _reconcile_addresses(
        self,
        fingerprint_id: int,
        addresses: List[Tuple[AddressRole, RelayAddress]],
        extend_existing: bool = True,
    ) -> None:
        """Writes the presence of each of |addresses| at the reference instant.

        If |extend_existing| is set, an address that the relay advertised with
        the same port in its latest snapshot has its row extended. Otherwise
        every address gets a new row.
        """
        for role, relay_address in addresses:
            index = self._context.address_presences.get(role, relay_address.family)
            existing = index.lookup_address(fingerprint_id, relay_address.address)
            same_port = existing is not None and existing.port == relay_address.port

            if same_port and existing.record_last_seen >= self.reference_instant:
                continue

            if same_port and extend_existing:
                self._store.extend_address_presence(
                    role,
                    relay_address.family,
                    existing.address_presence_id,
                    self.reference_instant,
                )
                index.record(
                    attr.evolve(existing, record_last_seen=self.reference_instant)
                )
                continue

            address_presence_id = self._insert_address(
                fingerprint_id, role, relay_address
            )
            index.record(
                AddressPresenceRecord(
                    address_presence_id=address_presence_id,
                    fingerprint_id=fingerprint_id,
                    address=relay_address.address,
                    port=relay_address.port,
                    record_time_inserted=self.reference_instant,
                    record_last_seen=self.reference_instant,
                )
            )

    def _insert_address(
        self, fingerprint_id: int, role: AddressRole, relay_address: RelayAddress
    ) -> int:
        try:
            return self._store.insert_address_presence(
                role,
                relay_address.family,
                fingerprint_id,
                relay_address.address,
                relay_address.port,
                self.reference_instant,
            )
        except DuplicateValueError:
            address_presence_id = self._store.get_address_presence_id(
                role,
                relay_address.family,
                fingerprint_id,
                relay_address.address,
                relay_address.port,
                self.reference_instant,
            )
            if address_presence_id is None:
                raise StoreError(
                    f"lookup of {role.value} address [{relay_address.address}]",
                    LookupError("address reported as duplicate was not found"),
                ) from None
            return address_presence_id


def _parse_addresses(relay: RelayDetails) -> List[Tuple[AddressRole, RelayAddress]]:
    raw_addresses = [(AddressRole.OR, raw) for raw in relay.or_addresses]
    raw_addresses.extend((AddressRole.EXIT, raw) for raw in relay.exit_addresses)
    if relay.dir_address:
        raw_addresses.append((AddressRole.DIR, relay.dir_address))

    addresses = []
    for role, raw in raw_addresses:
        try:
            addresses.append((role, parse_relay_address(raw, role)))
        except ValueError as e:
            raise MalformedValueError(f"{role.value}_address", raw, str(e)) from e
    return addresses


def sync_relays(
    store: RelayHistoryStore,
    relays: Iterable[RelayDetails],
    reference_instant: datetime.datetime,
) -> SyncSummary:
    """Reconciles every relay in |relays| against the history in |store|, as
    of |reference_instant|. Stops at the first store failure."""
    context = SyncContext.build(store, reference_instant)
    reconciler = RelayReconciler(store, context)
    summary = SyncSummary(reference_instant)
    for relay in relays:
        summary.record(reconciler.reconcile(relay))

    logging.info(
        "Reconciled [%d] relays as of [%s]: [%d] confirmed, [%d] extended, "
        "[%d] superseded, [%d] skipped",
        summary.total,
        reference_instant,
        summary.count(ReconciliationOutcome.CONFIRMED),
        summary.count(ReconciliationOutcome.EXTENDED),
        summary.count(ReconciliationOutcome.SUPERSEDED),
        summary.count(ReconciliationOutcome.SKIPPED),
    )
    return summary


def import_consensus(
    store: RelayHistoryStore,
    consensus: ConsensusDocument,
    reference_instant: datetime.datetime,
) -> SyncSummary:
    """Records the import of |consensus| and synchronizes its relays."""
    with store.transaction():
        store.record_consensus_import(
            ConsensusImportRecord(
                version=consensus.version,
                build_revision=consensus.build_revision,
                relays_published=consensus.relays_published,
                bridges_published=consensus.bridges_published,
                relay_count=len(consensus.relays),
                acquisition_timestamp=reference_instant,
            )
        )
    logging.info(
        "Importing consensus version [%s] published at [%s] with [%d] relays",
        consensus.version,
        consensus.relays_published,
        len(consensus.relays),
    )
    return sync_relays(store, consensus.relays, reference_instant)
