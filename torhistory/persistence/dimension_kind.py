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
"""The closed set of dimension kinds, each bound to the table that stores
its values."""
from enum import Enum
from typing import Optional, Type

from torhistory.persistence.database import schema
from torhistory.persistence.database.database_entity import DatabaseEntity


class DimensionKind(Enum):
    """A kind of repeated free-text attribute stored once in its own table."""

    FINGERPRINT = "fingerprint"
    COUNTRY = "country"
    REGION = "region"
    CITY = "city"
    PLATFORM = "platform"
    VERSION = "version"
    CONTACT = "contact"
    EXIT_POLICY = "exit_policy"
    EXIT_POLICY_SUMMARY = "exit_policy_summary"
    EXIT_POLICY_V6_SUMMARY = "exit_policy_v6_summary"

    @property
    def schema_class(self) -> Type[DatabaseEntity]:
        return _SCHEMA_CLASS_FOR_KIND[self]

    @property
    def max_length(self) -> Optional[int]:
        """The longest value the store accepts for this kind, or None if
        values are unbounded."""
        return _MAX_LENGTH_FOR_KIND.get(self)


_SCHEMA_CLASS_FOR_KIND = {
    DimensionKind.FINGERPRINT: schema.NodeFingerprint,
    DimensionKind.COUNTRY: schema.Country,
    DimensionKind.REGION: schema.Region,
    DimensionKind.CITY: schema.City,
    DimensionKind.PLATFORM: schema.Platform,
    DimensionKind.VERSION: schema.SoftwareVersion,
    DimensionKind.CONTACT: schema.Contact,
    DimensionKind.EXIT_POLICY: schema.ExitPolicy,
    DimensionKind.EXIT_POLICY_SUMMARY: schema.ExitPolicySummary,
    DimensionKind.EXIT_POLICY_V6_SUMMARY: schema.ExitPolicyV6Summary,
}

_MAX_LENGTH_FOR_KIND = {
    DimensionKind.FINGERPRINT: 40,
    DimensionKind.COUNTRY: 2,
    DimensionKind.REGION: 255,
    DimensionKind.CITY: 255,
    DimensionKind.PLATFORM: 255,
    DimensionKind.VERSION: 64,
    DimensionKind.CONTACT: 4096,
}
