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

"""Fetches a consensus document and synchronizes the stored relay history
with it.

usage: sync_consensus.py [-h] [--config-filename CONFIG_FILENAME]
                         [--input-data-file INPUT_DATA_FILE]
                         [--consensus-backup-file CONSENSUS_BACKUP_FILE]
                         [--consensus-backup-gzip]
                         [--consensus-download-time CONSENSUS_DOWNLOAD_TIME]
                         [--consensus-download-time-format FORMAT]
                         [--extract-consensus-download-time-from-filename]
                         [--filename-regex FILENAME_REGEX] [--log LOG] [--quiet]

Example:
python -m torhistory.tools.sync_consensus --config-filename tor-history.yaml
python -m torhistory.tools.sync_consensus --config-filename tor-history.yaml \
    --input-data-file details-2021-01-03_10:00:00.json \
    --extract-consensus-download-time-from-filename
"""
import argparse
import logging
import sys
from typing import List, Optional, Union

import attr

from torhistory.config import TorHistoryConfig, load_config
from torhistory.ingest import consensus_fetcher
from torhistory.ingest.models.relay_details import ConsensusDocument
from torhistory.ingest.reference_instant import get_reference_instant
from torhistory.persistence.database.session_factory import SessionFactory
from torhistory.persistence.database.sqlalchemy_engine_manager import (
    SQLAlchemyEngineManager,
)
from torhistory.persistence.database.sqlalchemy_relay_history_store import (
    SQLAlchemyRelayHistoryStore,
)
from torhistory.persistence.errors import PersistenceError
from torhistory.persistence.reconciliation import SyncSummary, import_consensus


def _apply_overrides(
    config: TorHistoryConfig, args: argparse.Namespace
) -> TorHistoryConfig:
    """Returns |config| with the values given on the command line taking
    precedence."""
    consensus = config.consensus
    filename_regex = args.filename_regex or consensus.filename_regex
    consensus = attr.evolve(
        consensus,
        filename=args.input_data_file or consensus.filename,
        download_time=args.consensus_download_time or consensus.download_time,
        download_time_format=args.consensus_download_time_format
        or consensus.download_time_format,
        extract_download_time_from_filename=bool(
            args.extract_consensus_download_time_from_filename
            or consensus.extract_download_time_from_filename
            or filename_regex
        ),
        filename_regex=filename_regex,
    )
    backup = attr.evolve(
        config.backup,
        filename=args.consensus_backup_file or config.backup.filename,
        gzip=args.consensus_backup_gzip or config.backup.gzip,
    )
    return attr.evolve(config, consensus=consensus, backup=backup)


def sync_consensus(config: TorHistoryConfig) -> Optional[SyncSummary]:
    """Fetches the consensus described by |config|, backs it up and, if a
    database is configured, synchronizes the relay history with it."""
    consensus_config = config.consensus
    reference_instant = get_reference_instant(
        download_time=consensus_config.download_time,
        download_time_format=consensus_config.download_time_format,
        input_filename=consensus_config.filename,
        extract_from_filename=consensus_config.extract_download_time_from_filename,
        filename_regex=consensus_config.filename_regex,
    )
    logging.info("Reference instant of this run: [%s]", reference_instant)

    content = consensus_fetcher.fetch_consensus(
        input_filename=consensus_config.filename, url=consensus_config.url
    )
    if config.backup.filename:
        consensus_fetcher.backup_consensus(
            content,
            config.backup.filename,
            reference_instant,
            compress=config.backup.gzip,
        )

    consensus = ConsensusDocument.from_json(content)

    if config.database is None:
        logging.info("No database configured, skipping synchronization")
        return None

    db_url = config.database.get_db_url()
    SQLAlchemyEngineManager.init_engine_for_db_instance(db_url)
    try:
        with SessionFactory.using_database(db_url, autocommit=False) as session:
            return import_consensus(
                SQLAlchemyRelayHistoryStore(session), consensus, reference_instant
            )
    finally:
        SQLAlchemyEngineManager.teardown_engine_for_database(db_url)


def _create_parser() -> argparse.ArgumentParser:
    """Creates the CLI argument parser."""
    parser = argparse.ArgumentParser(
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--config-filename",
        required=False,
        help="The YAML configuration file",
    )
    parser.add_argument(
        "--input-data-file",
        required=False,
        help="Read the consensus from this file instead of downloading it",
    )
    parser.add_argument(
        "--consensus-backup-file",
        required=False,
        help="Save each downloaded consensus under this filename prefix",
    )
    parser.add_argument(
        "--consensus-backup-gzip",
        required=False,
        action="store_true",
        help="Compress consensus backups",
    )
    parser.add_argument(
        "--consensus-download-time",
        required=False,
        help="The time the consensus was downloaded. Useful when importing data "
        "downloaded in the past",
    )
    parser.add_argument(
        "--consensus-download-time-format",
        required=False,
        help="strptime format of the consensus download time",
    )
    parser.add_argument(
        "--extract-consensus-download-time-from-filename",
        required=False,
        action="store_true",
        help="When importing from a file, read the consensus download time from "
        "the filename",
    )
    parser.add_argument(
        "--filename-regex",
        required=False,
        help="The regex used to find the download time in the filename",
    )
    parser.add_argument(
        "--log",
        required=False,
        default=None,
        type=logging.getLevelName,
        help="Set the logging level",
    )
    parser.add_argument(
        "--quiet",
        required=False,
        action="store_true",
        help="Only log errors",
    )
    return parser


def _configure_logging(level: Union[int, str]) -> None:
    root = logging.getLogger()
    root.setLevel(level)


def main(argv: Optional[List[str]] = None) -> int:
    args = _create_parser().parse_args(argv)
    logging.basicConfig()

    try:
        config = _apply_overrides(load_config(args.config_filename), args)
        if args.quiet:
            _configure_logging("ERROR")
        else:
            _configure_logging(args.log or config.verbosity or "INFO")

        sync_consensus(config)
    except (
        PersistenceError,
        consensus_fetcher.ConsensusFetchError,
        ValueError,
        KeyError,
        OSError,
    ):
        logging.exception("Consensus synchronization failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
