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
"""Packaging for the tor-history synchronization engine and tools."""
import setuptools

REQUIRED_PACKAGES = [
    "attrs",
    "more-itertools",
    # PostgreSQL driver for the default `postgresql` drivername
    "psycopg2-binary",
    "PyYAML",
    "requests",
    "SQLAlchemy>=1.4,<2.0",
]

TEST_PACKAGES = [
    "mock",
    "pytest",
]

setuptools.setup(
    name="tor-history",
    version="1.0.0",
    python_requires=">=3.8",
    install_requires=REQUIRED_PACKAGES,
    extras_require={"test": TEST_PACKAGES},
    packages=setuptools.find_packages(
        exclude=["torhistory.tests", "torhistory.tests.*"]
    ),
)
