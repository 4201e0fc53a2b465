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
"""
Common utils for processing str fields (parsing into primitive types,
normalizing, etc).
"""
import datetime
import json
from typing import Any, Optional

ONIONOO_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def normalize_optional_str(value: Optional[str]) -> Optional[str]:
    """Strips surrounding whitespace from |value|. Returns None if nothing is
    left."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Expected value type str, found {type(value)}.")
    stripped = value.strip()
    return stripped or None


def parse_onionoo_datetime(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parses a timestamp in the `YYYY-MM-DD hh:mm:ss` UTC format used by the
    Onionoo documents into a naive datetime."""
    value = normalize_optional_str(value)
    if value is None:
        return None
    try:
        return datetime.datetime.strptime(value, ONIONOO_DATETIME_FORMAT)
    except ValueError as e:
        raise ValueError(f"Cannot parse timestamp value: {value}") from e


def canonical_json(value: Any) -> Optional[str]:
    """Returns a canonical serialization of |value|: keys sorted, no
    insignificant whitespace. Two structured values are equal iff their
    canonical serializations are equal. None and empty containers serialize to
    None."""
    if value is None:
        return None
    if isinstance(value, (list, dict)) and not value:
        return None
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
