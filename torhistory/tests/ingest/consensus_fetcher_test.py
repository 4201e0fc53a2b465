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
"""Tests for consensus_fetcher.py."""
import datetime
import gzip
import os
import tempfile
import unittest

import mock
import requests

from torhistory.ingest import consensus_fetcher
from torhistory.ingest.consensus_fetcher import (
    ConsensusFetchError,
    backup_consensus,
    backup_filename,
    download_consensus,
    fetch_consensus,
    read_consensus_file,
)

_CONTENT = b'{"version": "8.0", "relays": []}'
_FETCHED_AT = datetime.datetime(2021, 1, 3, 10, 0, 0)


class ConsensusFileTest(unittest.TestCase):
    """Tests for reading and backing up consensus files."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_backup_filename(self) -> None:
        self.assertEqual(
            "consensus-20210103100000", backup_filename("consensus", _FETCHED_AT, False)
        )
        self.assertEqual(
            "consensus-20210103100000.gz",
            backup_filename("consensus", _FETCHED_AT, True),
        )

    def test_backup_and_read(self) -> None:
        prefix = os.path.join(self.temp_dir.name, "consensus")

        filename = backup_consensus(_CONTENT, prefix, _FETCHED_AT)

        self.assertEqual(f"{prefix}-20210103100000", filename)
        self.assertEqual(_CONTENT, read_consensus_file(filename))

    def test_backup_and_read_compressed(self) -> None:
        prefix = os.path.join(self.temp_dir.name, "consensus")

        filename = backup_consensus(_CONTENT, prefix, _FETCHED_AT, compress=True)

        with gzip.open(filename, "rb") as f:
            self.assertEqual(_CONTENT, f.read())
        self.assertEqual(_CONTENT, read_consensus_file(filename))

    def test_read_missing_file(self) -> None:
        with self.assertRaises(ConsensusFetchError):
            read_consensus_file(os.path.join(self.temp_dir.name, "missing.json"))

    @mock.patch.object(consensus_fetcher, "download_consensus")
    def test_fetch_prefers_input_file(self, mock_download: mock.MagicMock) -> None:
        path = os.path.join(self.temp_dir.name, "consensus.json")
        with open(path, "wb") as f:
            f.write(_CONTENT)

        self.assertEqual(_CONTENT, fetch_consensus(input_filename=path))
        mock_download.assert_not_called()


@mock.patch("requests.get")
class DownloadConsensusTest(unittest.TestCase):
    """Tests for download_consensus."""

    def test_download(self, mock_get: mock.MagicMock) -> None:
        mock_get.return_value.content = _CONTENT

        self.assertEqual(_CONTENT, download_consensus("https://example.org/details"))
        mock_get.assert_called_with("https://example.org/details", timeout=300)

    def test_fetch_downloads_default_url(self, mock_get: mock.MagicMock) -> None:
        mock_get.return_value.content = _CONTENT

        self.assertEqual(_CONTENT, fetch_consensus())
        mock_get.assert_called_with(
            consensus_fetcher.DEFAULT_CONSENSUS_URL, timeout=300
        )

    def test_http_error(self, mock_get: mock.MagicMock) -> None:
        mock_get.return_value.raise_for_status.side_effect = (
            requests.exceptions.HTTPError("503 Server Error")
        )

        with self.assertRaises(ConsensusFetchError):
            download_consensus()

    def test_connection_error(self, mock_get: mock.MagicMock) -> None:
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(ConsensusFetchError):
            download_consensus()
