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

"""Custom configuration for how pytest should run."""
from _pytest.config import Config

import torhistory


def pytest_configure(config: Config) -> None:  # pylint: disable=unused-argument
    torhistory.called_from_test = True


def pytest_unconfigure() -> None:
    del torhistory.called_from_test
