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
"""Configuration of a tor-history installation, read from a YAML file.

Example:

    dbserver:
      host: localhost
      port: 5432
      database: tor_history
      username: tor
      password: secret
    consensus:
      url: https://onionoo.torproject.org/details
    backup:
      filename: /var/backups/tor/details
      gzip: true
    verbosity: INFO

Every key is optional. Without a `dbserver` section, consensus documents
are still fetched and backed up but not synchronized.
"""
import logging
from typing import Optional

import attr

from torhistory.ingest.consensus_fetcher import DEFAULT_CONSENSUS_URL
from torhistory.persistence.database.sqlalchemy_engine_manager import (
    SQLAlchemyEngineManager,
)
from torhistory.utils.yaml_dict import YAMLDict

DEFAULT_DRIVERNAME = "postgresql"


@attr.s(frozen=True, kw_only=True)
class DatabaseConfig:
    """Connection settings of the relational store. Either a full |url| or all
    of host, database and username must be given."""

    host: Optional[str] = attr.ib(default=None)
    port: Optional[int] = attr.ib(default=None)
    database: Optional[str] = attr.ib(default=None)
    username: Optional[str] = attr.ib(default=None)
    password: Optional[str] = attr.ib(default=None, repr=False)
    drivername: str = attr.ib(default=DEFAULT_DRIVERNAME)
    url: Optional[str] = attr.ib(default=None, repr=False)

    def __attrs_post_init__(self) -> None:
        if self.url:
            return
        required = {
            "host": self.host,
            "database": self.database,
            "username": self.username,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Incomplete database configuration, missing: {missing}")

    def get_db_url(self) -> str:
        if self.url:
            return self.url
        return SQLAlchemyEngineManager.get_server_instance_url(
            drivername=self.drivername,
            host=self.host,
            port=self.port,
            database=self.database,
            username=self.username,
            password=self.password,
        )

    @classmethod
    def from_yaml_dict(cls, yaml_dict: YAMLDict) -> Optional["DatabaseConfig"]:
        """Returns None if |yaml_dict| does not configure a database at all."""
        if not len(yaml_dict):
            return None
        return cls(
            host=yaml_dict.pop_optional("host", str),
            port=_optional_int(yaml_dict.pop_optional("port", (int, str)), "port"),
            database=yaml_dict.pop_optional("database", str),
            username=yaml_dict.pop_optional("username", str),
            password=_optional_str(yaml_dict.pop_optional("password", (str, int))),
            drivername=yaml_dict.pop_optional("drivername", str) or DEFAULT_DRIVERNAME,
            url=yaml_dict.pop_optional("url", str),
        )


@attr.s(frozen=True, kw_only=True)
class ConsensusConfig:
    """Where the consensus is read from, and how its download time is found."""

    url: str = attr.ib(default=DEFAULT_CONSENSUS_URL)
    filename: Optional[str] = attr.ib(default=None)
    download_time: Optional[str] = attr.ib(default=None)
    download_time_format: Optional[str] = attr.ib(default=None)
    extract_download_time_from_filename: bool = attr.ib(default=False)
    filename_regex: Optional[str] = attr.ib(default=None)

    @classmethod
    def from_yaml_dict(cls, yaml_dict: YAMLDict) -> "ConsensusConfig":
        filename_regex = yaml_dict.pop_optional("filename_regex", str)
        return cls(
            url=yaml_dict.pop_optional("url", str) or DEFAULT_CONSENSUS_URL,
            filename=yaml_dict.pop_optional("filename", str),
            download_time=yaml_dict.pop_optional("download_time", str),
            download_time_format=yaml_dict.pop_optional("download_time_format", str),
            # A custom filename regex implies extraction from the filename.
            extract_download_time_from_filename=bool(
                yaml_dict.pop_optional("extract_download_time_from_filename", bool)
                or filename_regex
            ),
            filename_regex=filename_regex,
        )


@attr.s(frozen=True, kw_only=True)
class BackupConfig:
    """If |filename| is set, every fetched consensus is saved under that
    prefix."""

    filename: Optional[str] = attr.ib(default=None)
    gzip: bool = attr.ib(default=False)

    @classmethod
    def from_yaml_dict(cls, yaml_dict: YAMLDict) -> "BackupConfig":
        return cls(
            filename=yaml_dict.pop_optional("filename", str),
            gzip=bool(yaml_dict.pop_optional("gzip", bool)),
        )


@attr.s(frozen=True, kw_only=True)
class TorHistoryConfig:
    database: Optional[DatabaseConfig] = attr.ib(default=None)
    consensus: ConsensusConfig = attr.ib(factory=ConsensusConfig)
    backup: BackupConfig = attr.ib(factory=BackupConfig)
    verbosity: Optional[str] = attr.ib(default=None)

    @classmethod
    def from_yaml_dict(cls, yaml_dict: YAMLDict) -> "TorHistoryConfig":
        database_dict = yaml_dict.pop_dict_optional("dbserver")
        consensus_dict = yaml_dict.pop_dict_optional("consensus")
        backup_dict = yaml_dict.pop_dict_optional("backup")
        config = cls(
            database=(
                DatabaseConfig.from_yaml_dict(database_dict)
                if database_dict is not None
                else None
            ),
            consensus=(
                ConsensusConfig.from_yaml_dict(consensus_dict)
                if consensus_dict is not None
                else ConsensusConfig()
            ),
            backup=(
                BackupConfig.from_yaml_dict(backup_dict)
                if backup_dict is not None
                else BackupConfig()
            ),
            verbosity=_optional_str(yaml_dict.pop_optional("verbosity", (str, int))),
        )
        for section, remaining in (
            ("dbserver", database_dict),
            ("consensus", consensus_dict),
            ("backup", backup_dict),
            ("", yaml_dict),
        ):
            if remaining is not None and len(remaining):
                logging.warning(
                    "Ignoring unknown configuration keys in [%s]: %s",
                    section or "<root>",
                    remaining.keys(),
                )
        return config


def load_config(config_path: Optional[str]) -> TorHistoryConfig:
    """Reads the configuration at |config_path|, or returns the default
    configuration if no path is given."""
    if not config_path:
        return TorHistoryConfig()
    logging.info("Reading configuration file [%s]", config_path)
    return TorHistoryConfig.from_yaml_dict(YAMLDict.from_path(config_path))


def _optional_str(value: Optional[object]) -> Optional[str]:
    return str(value) if value is not None else None


def _optional_int(value: Optional[object], field: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)  # type: ignore[call-overload]
    except ValueError as e:
        raise ValueError(f"The field [{field}] must be an integer: {value}") from e
