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
Class for generating SQLAlchemy Sessions objects for a database instance.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from torhistory.persistence.database.sqlalchemy_engine_manager import (
    SQLAlchemyEngineManager,
)


class SessionFactory:
    """Creates SQLAlchemy sessions for the given database"""

    @classmethod
    def for_database(cls, db_url: str) -> Session:
        engine = SQLAlchemyEngineManager.get_engine_for_database(db_url)
        if engine is None:
            raise ValueError("No engine set for the requested database")
        return Session(bind=engine)

    @classmethod
    @contextmanager
    def using_database(
        cls, db_url: str, *, autocommit: bool = True
    ) -> Iterator[Session]:
        """Yields a session for the database at |db_url| and closes it on exit.

        If |autocommit| is set, the session is committed when the block exits
        normally. The session is rolled back if the block raises.
        """
        session = cls.for_database(db_url)
        try:
            yield session
            if autocommit:
                session.commit()
        except Exception as e:
            logging.debug("Rolling back session after error: %s", e)
            session.rollback()
            raise
        finally:
            session.close()
