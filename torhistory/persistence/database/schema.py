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
"""Define the ORM schema objects that map directly to the database.

The below schema uses only generic SQLAlchemy types, and therefore should be
portable between database implementations.

There are three groups of tables:

- Dimension tables hold the repeated free-text attributes of a relay (region,
  city, platform, contact, exit policies, ...). Each distinct value is stored
  once and referenced by a surrogate key. Values are unique through a digest
  column so that arbitrarily long values (e.g. exit policies) can be indexed.
  The country table is keyed by its lower-cased two-letter code instead.
- The relay_version table is a historical table: each row describes the
  attributes of one relay over the interval
  [record_time_inserted, record_last_seen]. A new row is only written when the
  attributes change.
- The six address presence tables record, per role (or/exit/dir) and family
  (v4/v6), the interval over which a relay advertised an address and port.
"""
import hashlib

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, declared_attr, relationship

from torhistory.persistence.database.database_entity import DatabaseEntity

# Base class for all table classes
Base = declarative_base()


def value_digest(value: str) -> str:
    """Returns the digest used to enforce uniqueness of dimension values."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


# Dimensions


class _DimensionMixin(DatabaseEntity):
    """Columns shared by all dimension tables."""

    value = Column(Text, nullable=False)

    value_digest = Column(String(64), nullable=False, unique=True)


class NodeFingerprint(Base, _DimensionMixin):
    """Every relay fingerprint ever seen. The surrogate key identifies a relay
    in all historical tables."""

    __tablename__ = "node_fingerprint"

    fingerprint_id = Column(Integer, primary_key=True)


class Country(Base, DatabaseEntity):
    """Countries, keyed by their lower-cased ISO 3166-1 alpha-2 code."""

    __tablename__ = "country"

    country_code = Column(String(2), primary_key=True)

    country_name = Column(String(255))


class Region(Base, _DimensionMixin):
    __tablename__ = "region"

    region_id = Column(Integer, primary_key=True)


class City(Base, _DimensionMixin):
    __tablename__ = "city"

    city_id = Column(Integer, primary_key=True)


class Platform(Base, _DimensionMixin):
    __tablename__ = "platform"

    platform_id = Column(Integer, primary_key=True)


class SoftwareVersion(Base, _DimensionMixin):
    __tablename__ = "software_version"

    version_id = Column(Integer, primary_key=True)


class Contact(Base, _DimensionMixin):
    __tablename__ = "contact"

    contact_id = Column(Integer, primary_key=True)


class ExitPolicy(Base, _DimensionMixin):
    __tablename__ = "exit_policy"

    exit_policy_id = Column(Integer, primary_key=True)


class ExitPolicySummary(Base, _DimensionMixin):
    __tablename__ = "exit_policy_summary"

    exit_policy_summary_id = Column(Integer, primary_key=True)


class ExitPolicyV6Summary(Base, _DimensionMixin):
    __tablename__ = "exit_policy_v6_summary"

    exit_policy_v6_summary_id = Column(Integer, primary_key=True)


# Relay versions


class RelayVersion(Base, DatabaseEntity):
    """A historical version of the attributes of a single relay."""

    __tablename__ = "relay_version"
    __table_args__ = (
        UniqueConstraint(
            "fingerprint_id",
            "record_time_inserted",
            name="relay_version_fingerprint_inserted_unique",
        ),
        Index(
            "relay_version_fingerprint_last_seen",
            "fingerprint_id",
            "record_last_seen",
        ),
    )

    relay_version_id = Column(Integer, primary_key=True)

    fingerprint_id = Column(
        Integer, ForeignKey("node_fingerprint.fingerprint_id"), nullable=False
    )
    country_code = Column(String(2), ForeignKey("country.country_code"))
    region_id = Column(Integer, ForeignKey("region.region_id"))
    city_id = Column(Integer, ForeignKey("city.city_id"))
    platform_id = Column(Integer, ForeignKey("platform.platform_id"))
    version_id = Column(Integer, ForeignKey("software_version.version_id"))
    contact_id = Column(Integer, ForeignKey("contact.contact_id"))
    exit_policy_id = Column(Integer, ForeignKey("exit_policy.exit_policy_id"))
    exit_policy_summary_id = Column(
        Integer, ForeignKey("exit_policy_summary.exit_policy_summary_id")
    )
    exit_policy_v6_summary_id = Column(
        Integer, ForeignKey("exit_policy_v6_summary.exit_policy_v6_summary_id")
    )

    nickname = Column(String(255))
    last_changed_address_or_port = Column(DateTime)
    first_seen = Column(DateTime)
    flags = Column(JSON)
    # Every decoded field of the relay record that is not stored in one of the
    # columns above, including fields unknown at the time of writing.
    details = Column(JSON)

    record_time_inserted = Column(DateTime, nullable=False)
    record_last_seen = Column(DateTime, nullable=False)

    node_fingerprint = relationship(NodeFingerprint)
    country = relationship(Country)
    region = relationship(Region)
    city = relationship(City)
    platform = relationship(Platform)
    software_version = relationship(SoftwareVersion)
    contact = relationship(Contact)
    exit_policy = relationship(ExitPolicy)
    exit_policy_summary = relationship(ExitPolicySummary)
    exit_policy_v6_summary = relationship(ExitPolicyV6Summary)


# Address presence


class _AddressPresenceMixin(DatabaseEntity):
    """Columns shared by all address presence tables."""

    address_presence_id = Column(Integer, primary_key=True)

    @declared_attr
    def fingerprint_id(cls) -> Column:  # pylint: disable=no-self-argument
        return Column(
            Integer, ForeignKey("node_fingerprint.fingerprint_id"), nullable=False
        )

    address = Column(String(45), nullable=False)

    record_time_inserted = Column(DateTime, nullable=False)
    record_last_seen = Column(DateTime, nullable=False)


class _PortAddressPresenceMixin(_AddressPresenceMixin):
    port = Column(Integer, nullable=False)

    @declared_attr
    def __table_args__(cls):  # pylint: disable=no-self-argument
        return (
            UniqueConstraint(
                "fingerprint_id",
                "address",
                "port",
                "record_time_inserted",
                name=f"{cls.__tablename__}_unique",
            ),
            Index(
                f"{cls.__tablename__}_fingerprint_last_seen",
                "fingerprint_id",
                "record_last_seen",
            ),
        )


class _ExitAddressPresenceMixin(_AddressPresenceMixin):
    @declared_attr
    def __table_args__(cls):  # pylint: disable=no-self-argument
        return (
            UniqueConstraint(
                "fingerprint_id",
                "address",
                "record_time_inserted",
                name=f"{cls.__tablename__}_unique",
            ),
            Index(
                f"{cls.__tablename__}_fingerprint_last_seen",
                "fingerprint_id",
                "record_last_seen",
            ),
        )


class OrAddressV4(Base, _PortAddressPresenceMixin):
    __tablename__ = "or_address_v4"


class OrAddressV6(Base, _PortAddressPresenceMixin):
    __tablename__ = "or_address_v6"


class ExitAddressV4(Base, _ExitAddressPresenceMixin):
    __tablename__ = "exit_address_v4"


class ExitAddressV6(Base, _ExitAddressPresenceMixin):
    __tablename__ = "exit_address_v6"


class DirAddressV4(Base, _PortAddressPresenceMixin):
    __tablename__ = "dir_address_v4"


class DirAddressV6(Base, _PortAddressPresenceMixin):
    __tablename__ = "dir_address_v6"


# Import log


class ConsensusImport(Base, DatabaseEntity):
    """One row per consensus document that was synchronized."""

    __tablename__ = "consensus_import"

    consensus_import_id = Column(Integer, primary_key=True)

    version = Column(String(32))
    build_revision = Column(String(64))
    relays_published = Column(DateTime)
    bridges_published = Column(DateTime)
    relay_count = Column(Integer)
    acquisition_timestamp = Column(DateTime, nullable=False)
