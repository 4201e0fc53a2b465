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
"""Fetches consensus documents from Onionoo or from disk, and keeps backups
of what was fetched."""
import datetime
import gzip
import logging
from typing import Optional

import requests

DEFAULT_CONSENSUS_URL = "https://onionoo.torproject.org/details"

_TIMEOUT_SECONDS = 300
_BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


class ConsensusFetchError(Exception):
    """Raised when a consensus document cannot be retrieved."""


def read_consensus_file(path: str) -> bytes:
    """Returns the contents of the consensus saved at |path|, decompressing it
    if the file name ends in `.gz`."""
    opener = gzip.open if path.endswith(".gz") else open
    try:
        with opener(path, "rb") as consensus_file:
            content = consensus_file.read()
    except OSError as e:
        raise ConsensusFetchError(f"Unable to read consensus file [{path}]: {e}") from e
    logging.info("Read [%d] bytes of consensus from [%s]", len(content), path)
    return content


def download_consensus(url: str = DEFAULT_CONSENSUS_URL) -> bytes:
    """Downloads the consensus document published at |url|."""
    try:
        response = requests.get(url, timeout=_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise ConsensusFetchError(
            f"Unable to download consensus from [{url}]: {e}"
        ) from e
    logging.info(
        "Downloaded [%d] bytes of consensus from [%s]", len(response.content), url
    )
    return response.content


def backup_filename(prefix: str, fetched_at: datetime.datetime, compress: bool) -> str:
    filename = f"{prefix}-{fetched_at.strftime(_BACKUP_TIMESTAMP_FORMAT)}"
    return f"{filename}.gz" if compress else filename


def backup_consensus(
    content: bytes,
    prefix: str,
    fetched_at: datetime.datetime,
    compress: bool = False,
) -> str:
    """Writes |content| to `<prefix>-<YYYYmmddHHMMSS>[.gz]` and returns the
    name of the file written."""
    filename = backup_filename(prefix, fetched_at, compress)
    opener = gzip.open if compress else open
    with opener(filename, "wb") as backup_file:
        backup_file.write(content)
    logging.info("Saved consensus backup to [%s]", filename)
    return filename


def fetch_consensus(
    *,
    input_filename: Optional[str] = None,
    url: str = DEFAULT_CONSENSUS_URL,
) -> bytes:
    """Reads the consensus from |input_filename| if given, otherwise downloads
    it from |url|."""
    if input_filename:
        return read_consensus_file(input_filename)
    return download_consensus(url)
