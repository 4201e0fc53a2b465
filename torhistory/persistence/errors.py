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
"""Contains errors for the persistence directory.

Every error raised by the relational store is one of the classes below. The
|fatal| class attribute records whether a synchronization run may continue
after the error is raised: duplicates are recovered locally by looking up the
row that already exists, everything else aborts the run.
"""
from typing import Any


class PersistenceError(Exception):
    """Raised when an error with the persistence layer is encountered."""

    fatal: bool = True


class DuplicateValueError(PersistenceError):
    """Raised when an insert conflicts with a row that already exists because
    of a uniqueness constraint, e.g. a value registered concurrently or a
    snapshot that was already imported."""

    fatal = False

    def __init__(self, table_name: str, value: Any):
        self.table_name = table_name
        self.value = value
        super().__init__(
            f"Value [{value}] already exists in table [{table_name}]"
        )


class MalformedValueError(PersistenceError):
    """Raised when a value cannot be stored as given, e.g. because it exceeds
    the capacity of its column."""

    def __init__(self, table_name: str, value: Any, reason: str):
        self.table_name = table_name
        self.value = value
        super().__init__(
            f"Unable to store value [{value}] in table [{table_name}]: {reason}"
        )


class StoreError(PersistenceError):
    """Raised when the relational store fails for any other reason, e.g. a
    lost connection."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        super().__init__(f"Store failure during [{operation}]: {cause}")
