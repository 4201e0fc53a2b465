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
"""Decides whether an incoming relay record describes the same attributes
as the most recent stored version of that relay."""
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from torhistory.common.str_field_utils import canonical_json
from torhistory.ingest.models.relay_details import RelayDetails
from torhistory.persistence.relay_history_store import NodeVersionSnapshot


class ChangeVerdict(Enum):
    SAME = "same"
    DIFFERENT = "different"


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value is not None else None


# (name, value of the incoming record, value of the stored version). Each pair
# of values is compared for plain equality.
_COMPARED_FIELDS: List[
    Tuple[str, Callable[[RelayDetails], Any], Callable[[NodeVersionSnapshot], Any]]
] = [
    ("nickname", lambda r: r.nickname, lambda s: s.nickname),
    ("country", lambda r: r.country, lambda s: s.country_code),
    ("region", lambda r: r.region_name, lambda s: s.region),
    ("city", lambda r: r.city_name, lambda s: s.city),
    ("platform", lambda r: r.platform, lambda s: s.platform),
    ("version", lambda r: r.version, lambda s: s.version),
    ("contact", lambda r: _lower(r.contact), lambda s: _lower(s.contact)),
    (
        "last_changed_address_or_port",
        lambda r: r.last_changed_address_or_port,
        lambda s: s.last_changed_address_or_port,
    ),
    ("first_seen", lambda r: r.first_seen, lambda s: s.first_seen),
    (
        "exit_policy",
        lambda r: canonical_json(r.exit_policy),
        lambda s: s.exit_policy,
    ),
    (
        "exit_policy_summary",
        lambda r: canonical_json(r.exit_policy_summary),
        lambda s: s.exit_policy_summary,
    ),
    (
        "exit_policy_v6_summary",
        lambda r: canonical_json(r.exit_policy_v6_summary),
        lambda s: s.exit_policy_v6_summary,
    ),
]


def changed_fields(
    incoming: RelayDetails, prior: Optional[NodeVersionSnapshot]
) -> List[str]:
    """Returns the names of the compared fields whose values differ between
    |incoming| and |prior|. If there is no prior version, every field is
    reported as changed."""
    if prior is None:
        return [name for name, _, _ in _COMPARED_FIELDS]
    return [
        name
        for name, incoming_value, prior_value in _COMPARED_FIELDS
        if incoming_value(incoming) != prior_value(prior)
    ]


def compare(
    incoming: RelayDetails, prior: Optional[NodeVersionSnapshot]
) -> ChangeVerdict:
    """Returns SAME if every compared field of |incoming| equals that of
    |prior|, DIFFERENT otherwise or if there is no prior version.

    Contact information is compared case-insensitively. Exit policies are
    compared through their canonical JSON serialization.
    """
    if prior is None:
        return ChangeVerdict.DIFFERENT
    for _, incoming_value, prior_value in _COMPARED_FIELDS:
        if incoming_value(incoming) != prior_value(prior):
            return ChangeVerdict.DIFFERENT
    return ChangeVerdict.SAME
