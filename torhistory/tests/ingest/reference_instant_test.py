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
"""Tests for reference_instant.py."""
import datetime
import unittest

import mock

from torhistory.ingest import reference_instant
from torhistory.ingest.reference_instant import (
    extract_timestamp_from_filename,
    get_reference_instant,
    parse_timestamp,
)

_T = datetime.datetime(2021, 1, 3, 10, 0, 0)


class ParseTimestampTest(unittest.TestCase):
    """Tests for parse_timestamp."""

    def test_known_formats(self) -> None:
        for value in [
            "2021-01-03_10:00:00",
            "20210103100000",
            "2021-01-03-10-00",
            "2021-01-03 10:00:00",
            "2021-01-03T12:00:00+02:00",
            "Sun Jan 03 10:00:00 2021",
        ]:
            self.assertEqual(_T, parse_timestamp(value), value)

    def test_explicit_format(self) -> None:
        self.assertEqual(_T, parse_timestamp("03/01/2021 10h00", "%d/%m/%Y %Hh%M"))
        self.assertIsNone(parse_timestamp("2021-01-03_10:00:00", "%d/%m/%Y %Hh%M"))

    def test_drops_sub_second_precision(self) -> None:
        self.assertEqual(_T, parse_timestamp("2021-01-03T10:00:00.250000+00:00"))

    def test_unparseable(self) -> None:
        self.assertIsNone(parse_timestamp("yesterday"))


class ExtractTimestampFromFilenameTest(unittest.TestCase):
    """Tests for extract_timestamp_from_filename."""

    def test_default_regex(self) -> None:
        self.assertEqual(
            _T,
            extract_timestamp_from_filename("/data/2020/consensus-20210103100000.gz"),
        )
        self.assertEqual(
            _T, extract_timestamp_from_filename("details-2021-01-03_10:00:00.json")
        )

    def test_custom_regex_and_format(self) -> None:
        self.assertEqual(
            _T,
            extract_timestamp_from_filename(
                "relays.03012021T1000.json", r"\d{8}T\d{4}", "%d%m%YT%H%M"
            ),
        )

    def test_no_timestamp(self) -> None:
        with self.assertRaises(ValueError):
            extract_timestamp_from_filename("consensus.json")


class GetReferenceInstantTest(unittest.TestCase):
    """Tests for get_reference_instant."""

    @mock.patch.object(reference_instant, "utc_now", return_value=_T)
    def test_defaults_to_now(self, _mock_now: mock.MagicMock) -> None:
        self.assertEqual(_T, get_reference_instant())

    def test_explicit_download_time(self) -> None:
        self.assertEqual(_T, get_reference_instant(download_time="2021-01-03 10:00:00"))

    def test_unparseable_download_time(self) -> None:
        with self.assertRaises(ValueError):
            get_reference_instant(download_time="yesterday")

    def test_from_filename(self) -> None:
        self.assertEqual(
            _T,
            get_reference_instant(
                input_filename="consensus-20210103100000",
                extract_from_filename=True,
            ),
        )

    def test_conflicting_options(self) -> None:
        with self.assertRaises(ValueError):
            get_reference_instant(
                download_time="2021-01-03 10:00:00",
                input_filename="consensus-20210103100000",
                extract_from_filename=True,
            )

    def test_extraction_requires_input_file(self) -> None:
        with self.assertRaises(ValueError):
            get_reference_instant(extract_from_filename=True)

    def test_utc_now_is_naive(self) -> None:
        now = reference_instant.utc_now()

        self.assertIsNone(now.tzinfo)
        self.assertEqual(0, now.microsecond)
