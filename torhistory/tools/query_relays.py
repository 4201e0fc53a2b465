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

"""Prints the current versions of relays matching a country, an IP address
or a contact substring, as JSON lines.

usage: query_relays.py [-h] [--config-filename CONFIG_FILENAME]
                       (--country COUNTRY | --ip IP | --contact CONTACT)
                       [--log LOG]

Example:
python -m torhistory.tools.query_relays --config-filename cfg.yaml --country de
python -m torhistory.tools.query_relays --config-filename cfg.yaml --ip 2001:db8::1
"""
import argparse
import json
import logging
import sys
from typing import List, Optional, TextIO

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from torhistory.config import load_config
from torhistory.persistence import relay_history_queries
from torhistory.persistence.database.session_factory import SessionFactory
from torhistory.persistence.database.sqlalchemy_engine_manager import (
    SQLAlchemyEngineManager,
)
from torhistory.persistence.errors import PersistenceError


def query_relays(
    session: Session, args: argparse.Namespace
) -> List[relay_history_queries.RelayVersionView]:
    if args.country is not None:
        ids = relay_history_queries.get_current_relay_version_ids_by_country_code(
            session, args.country.lower()
        )
    elif args.ip is not None:
        ids = relay_history_queries.get_current_relay_version_ids_by_ip(
            session, args.ip
        )
    else:
        ids = relay_history_queries.get_current_relay_version_ids_by_contact(
            session, args.contact
        )
    logging.info("Found [%d] matching relays", len(ids))
    return relay_history_queries.get_relay_versions_by_ids(session, ids)


def print_relays(
    relays: List[relay_history_queries.RelayVersionView], out: TextIO
) -> None:
    for relay in relays:
        out.write(json.dumps(relay.to_serializable(), sort_keys=True))
        out.write("\n")


def _create_parser() -> argparse.ArgumentParser:
    """Creates the CLI argument parser."""
    parser = argparse.ArgumentParser(
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--config-filename",
        required=True,
        help="The YAML configuration file with the database settings",
    )
    query = parser.add_mutually_exclusive_group(required=True)
    query.add_argument("--country", help="Two-letter country code")
    query.add_argument("--ip", help="IPv4 or IPv6 address")
    query.add_argument("--contact", help="Substring of the contact information")
    parser.add_argument(
        "--log",
        required=False,
        default="WARNING",
        type=logging.getLevelName,
        help="Set the logging level",
    )
    return parser


def main(argv: Optional[List[str]] = None, out: TextIO = sys.stdout) -> int:
    args = _create_parser().parse_args(argv)
    logging.basicConfig()
    logging.getLogger().setLevel(args.log)

    try:
        config = load_config(args.config_filename)
        if config.database is None:
            raise ValueError("No database configured")
        db_url = config.database.get_db_url()
        SQLAlchemyEngineManager.init_engine_for_db_instance(db_url)
        try:
            with SessionFactory.using_database(db_url, autocommit=False) as session:
                print_relays(query_relays(session, args), out)
        finally:
            SQLAlchemyEngineManager.teardown_engine_for_database(db_url)
    except (PersistenceError, SQLAlchemyError, ValueError, KeyError):
        logging.exception("Query failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
