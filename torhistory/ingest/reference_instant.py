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
"""Determines the reference instant of a synchronization run: the single
timestamp at which every relay in the consensus is considered seen.

By default this is the current time. When importing a consensus that was
downloaded earlier, the download time can be given explicitly or extracted
from the name of the file it was saved to.
"""
import datetime
import logging
import os
import re
from typing import List, Optional

DEFAULT_FILENAME_REGEX = r"[0-9][0-9-_:]+[0-9]"

# Layouts tried, in order, when no explicit format is given.
KNOWN_FORMATS: List[str] = [
    "%Y-%m-%d_%H:%M:%S",
    "%Y-%m-%d_%H:%M",
    "%Y%m%d%H%M%S",
    "%Y%m%d%H%M",
    "%Y-%m-%d-%H-%M-%S",
    "%Y-%m-%d-%H-%M",
    "%Y-%m-%d %H:%M:%S",
    # RFC 3339
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    # ANSI C, Unix date, Ruby date
    "%a %b %d %H:%M:%S %Y",
    "%a %b %d %H:%M:%S %Z %Y",
    "%a %b %d %H:%M:%S %z %Y",
    # RFC 822, RFC 850, RFC 1123
    "%d %b %y %H:%M %Z",
    "%d %b %y %H:%M %z",
    "%A, %d-%b-%y %H:%M:%S %Z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%a, %d %b %Y %H:%M:%S %z",
]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc).replace(
        tzinfo=None, microsecond=0
    )


def _to_naive_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


def parse_timestamp(
    value: str, timestamp_format: Optional[str] = None
) -> Optional[datetime.datetime]:
    """Parses |value| with |timestamp_format| if given, or with the first of
    the KNOWN_FORMATS that matches. Returns None if nothing matches."""
    formats = [timestamp_format] if timestamp_format else KNOWN_FORMATS
    for candidate_format in formats:
        try:
            return _to_naive_utc(
                datetime.datetime.strptime(value.strip(), candidate_format)
            )
        except ValueError:
            continue
    return None


def extract_timestamp_from_filename(
    filename: str,
    filename_regex: Optional[str] = None,
    timestamp_format: Optional[str] = None,
) -> datetime.datetime:
    """Returns the first substring of the base name of |filename| matching
    |filename_regex| that parses as a timestamp. Raises ValueError if there is
    none."""
    pattern = re.compile(filename_regex or DEFAULT_FILENAME_REGEX)
    candidates = pattern.findall(os.path.basename(filename))
    for candidate in candidates:
        if isinstance(candidate, tuple):
            candidate = candidate[0]
        parsed = parse_timestamp(candidate, timestamp_format)
        if parsed is not None:
            return parsed
    raise ValueError(
        f"Unable to extract a timestamp from filename [{filename}], "
        f"candidates: {candidates}"
    )


def get_reference_instant(
    *,
    download_time: Optional[str] = None,
    download_time_format: Optional[str] = None,
    input_filename: Optional[str] = None,
    extract_from_filename: bool = False,
    filename_regex: Optional[str] = None,
) -> datetime.datetime:
    """Returns the reference instant of a run, as a naive UTC datetime with
    second precision.

    Raises ValueError if both an explicit |download_time| and extraction from
    the filename are requested, if extraction is requested without an input
    file, or if the timestamp cannot be parsed.
    """
    if download_time and extract_from_filename:
        raise ValueError(
            "A download time cannot be given when it is extracted from the filename"
        )

    if download_time:
        parsed = parse_timestamp(download_time, download_time_format)
        if parsed is None:
            raise ValueError(f"Unable to parse download time [{download_time}]")
        logging.info("Using explicit download time [%s]", parsed)
        return parsed

    if extract_from_filename:
        if not input_filename:
            raise ValueError(
                "An input file is required to extract the download time from its name"
            )
        parsed = extract_timestamp_from_filename(
            input_filename, filename_regex, download_time_format
        )
        logging.info(
            "Extracted download time [%s] from filename [%s]", parsed, input_filename
        )
        return parsed

    return utc_now()
