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
"""Tests for relay_history_queries.py."""
import datetime
import unittest
from typing import Any

from torhistory.ingest.models.relay_details import RelayDetails
from torhistory.persistence import relay_history_queries
from torhistory.persistence.database.session_factory import SessionFactory
from torhistory.persistence.database.sqlalchemy_relay_history_store import (
    SQLAlchemyRelayHistoryStore,
)
from torhistory.persistence.reconciliation import sync_relays
from torhistory.tests.utils import fakes

_ALICE = "A" * 40
_BOB = "B" * 40

_T1 = datetime.datetime(2021, 1, 3, 10, 0, 0)
_T2 = datetime.datetime(2021, 1, 3, 11, 0, 0)


def _alice(**overrides: Any) -> RelayDetails:
    raw = {
        "fingerprint": _ALICE,
        "nickname": "alice",
        "or_addresses": ["10.0.0.1:9001"],
        "country": "us",
        "country_name": "United States of America",
        "contact": "Alice <alice@Example.com>",
        "exit_policy_summary": {"accept": ["80", "443"]},
        "flags": ["Running", "Exit"],
    }
    raw.update(overrides)
    return RelayDetails.from_json(raw)


def _bob() -> RelayDetails:
    return RelayDetails.from_json(
        {
            "fingerprint": _BOB,
            "nickname": "bob",
            "or_addresses": ["[2001:db8::1]:9001"],
            "exit_addresses": ["10.0.0.9"],
            "country": "us",
            "country_name": "United States of America",
            "contact": "bob_100%",
        }
    )


class RelayHistoryQueriesTest(unittest.TestCase):
    """Tests for the read-side queries over the relay history."""

    def setUp(self) -> None:
        self.db_url = fakes.use_in_memory_sqlite_database()
        self.session = SessionFactory.for_database(self.db_url)
        store = SQLAlchemyRelayHistoryStore(self.session)

        sync_relays(store, [_alice(), _bob()], _T1)
        sync_relays(
            store,
            [
                _alice(
                    country="de",
                    country_name="Germany",
                    or_addresses=["10.0.0.2:9001"],
                ),
                _bob(),
            ],
            _T2,
        )

        self.alice_v1 = self._version_id(_ALICE, _T1)
        self.alice_v2 = self._version_id(_ALICE, _T2)
        self.bob_v1 = self._version_id(_BOB, _T1)

    def tearDown(self) -> None:
        self.session.close()
        fakes.teardown_in_memory_sqlite_databases()

    def _version_id(self, fingerprint: str, at: datetime.datetime) -> int:
        view = relay_history_queries.get_relay_version_at(self.session, fingerprint, at)
        assert view is not None
        return view.relay_version_id

    def test_versions(self) -> None:
        self.assertNotEqual(self.alice_v1, self.alice_v2)
        self.assertEqual(
            self.bob_v1,
            relay_history_queries.get_relay_version_at(
                self.session, _BOB, _T2
            ).relay_version_id,
        )
        self.assertIsNone(
            relay_history_queries.get_relay_version_at(
                self.session, _ALICE, _T1 - datetime.timedelta(seconds=1)
            )
        )

    def test_version_at_ignores_fingerprint_case(self) -> None:
        view = relay_history_queries.get_relay_version_at(
            self.session, _ALICE.lower(), _T2 + datetime.timedelta(days=1)
        )

        self.assertEqual(self.alice_v2, view.relay_version_id)
        self.assertEqual("de", view.country_code)
        self.assertEqual("Germany", view.country_name)

    def test_by_country_code(self) -> None:
        self.assertEqual(
            [self.bob_v1],
            relay_history_queries.get_current_relay_version_ids_by_country_code(
                self.session, "us"
            ),
        )
        self.assertEqual(
            [self.alice_v2],
            relay_history_queries.get_current_relay_version_ids_by_country_code(
                self.session, "de"
            ),
        )
        self.assertEqual(
            [],
            relay_history_queries.get_current_relay_version_ids_by_country_code(
                self.session, "fr"
            ),
        )

    def test_invalid_country_code(self) -> None:
        for country_code in ["US", "usa", "u", ""]:
            with self.assertRaises(ValueError, msg=country_code):
                relay_history_queries.get_current_relay_version_ids_by_country_code(
                    self.session, country_code
                )

    def test_by_ip(self) -> None:
        by_ip = relay_history_queries.get_current_relay_version_ids_by_ip

        self.assertEqual([self.alice_v2], by_ip(self.session, "10.0.0.1"))
        self.assertEqual([self.alice_v2], by_ip(self.session, "10.0.0.2"))
        self.assertEqual([self.bob_v1], by_ip(self.session, "2001:DB8:0::1"))
        self.assertEqual([self.bob_v1], by_ip(self.session, "10.0.0.9"))
        self.assertEqual([], by_ip(self.session, "10.0.0.3"))
        self.assertEqual([], by_ip(self.session, "not-an-address"))

    def test_by_contact(self) -> None:
        by_contact = relay_history_queries.get_current_relay_version_ids_by_contact

        self.assertEqual([self.alice_v2], by_contact(self.session, "EXAMPLE.COM"))
        self.assertEqual([self.bob_v1], by_contact(self.session, "_100%"))
        self.assertEqual([], by_contact(self.session, "b_b"))
        self.assertEqual(
            sorted([self.alice_v2, self.bob_v1]), by_contact(self.session, "")
        )

    def test_get_relay_versions_by_ids(self) -> None:
        views = relay_history_queries.get_relay_versions_by_ids(
            self.session, [self.alice_v1, self.bob_v1]
        )

        self.assertEqual(
            sorted([self.alice_v1, self.bob_v1]),
            [view.relay_version_id for view in views],
        )
        alice = next(view for view in views if view.fingerprint == _ALICE)
        self.assertEqual("alice", alice.nickname)
        self.assertEqual("United States of America", alice.country_name)
        self.assertEqual({"accept": ["80", "443"]}, alice.exit_policy_summary)
        self.assertEqual(["Running", "Exit"], alice.flags)
        self.assertEqual(["10.0.0.1:9001"], alice.details["or_addresses"])
        self.assertEqual(_T1, alice.record_last_seen)

        self.assertEqual(
            [], relay_history_queries.get_relay_versions_by_ids(self.session, [])
        )

    def test_to_serializable(self) -> None:
        view = relay_history_queries.get_relay_version_at(self.session, _BOB, _T2)
        serializable = view.to_serializable()

        self.assertEqual(_BOB, serializable["fingerprint"])
        self.assertEqual("2021-01-03 10:00:00", serializable["record_time_inserted"])
        self.assertEqual("2021-01-03 11:00:00", serializable["record_last_seen"])
        self.assertEqual("bob_100%", serializable["contact"])
        self.assertIsNone(serializable["exit_policy"])
