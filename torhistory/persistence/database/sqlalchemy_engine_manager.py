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
"""A class to manage all SQLAlchemy Engines for our database instances."""
import logging
from typing import Any, Dict, Optional

import sqlalchemy
from sqlalchemy import event
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import DeclarativeMeta

from torhistory.persistence.database.schema import Base


class SQLAlchemyEngineManager:
    """A class to manage all SQLAlchemy Engines for our database instances,
    keyed by database url."""

    _engine_for_database: Dict[str, Engine] = {}

    @classmethod
    def init_engine_for_db_instance(
        cls,
        db_url: str,
        schema_base: DeclarativeMeta = Base,
        **dialect_specific_kwargs: Any,
    ) -> Engine:
        """Initializes a sqlalchemy Engine object for the given database, creates
        any missing tables of |schema_base| and caches the engine for future use."""
        if db_url in cls._engine_for_database:
            raise ValueError(f"Already initialized database [{_redacted(db_url)}]")

        try:
            engine = sqlalchemy.create_engine(db_url, **dialect_specific_kwargs)
            if engine.dialect.name == "sqlite":
                _enable_sqlite_savepoints(engine)
            schema_base.metadata.create_all(engine)
        except BaseException as e:
            logging.error(
                "Unable to connect to database instance [%s]: %s",
                _redacted(db_url),
                str(e),
            )
            raise e
        cls._engine_for_database[db_url] = engine
        return engine

    @classmethod
    def get_engine_for_database(cls, db_url: str) -> Optional[Engine]:
        return cls._engine_for_database.get(db_url)

    @classmethod
    def teardown_engine_for_database(cls, db_url: str) -> None:
        cls._engine_for_database.pop(db_url).dispose()

    @classmethod
    def teardown_engines(cls) -> None:
        for engine in cls._engine_for_database.values():
            engine.dispose()
        cls._engine_for_database.clear()

    @classmethod
    def get_server_instance_url(
        cls,
        *,
        drivername: str,
        host: str,
        port: Optional[int],
        database: str,
        username: str,
        password: Optional[str],
    ) -> str:
        """Returns the url of a database server, password included."""
        url = URL.create(
            drivername=drivername,
            username=username,
            password=password,
            host=host,
            port=port,
            database=database,
        )
        return url.render_as_string(hide_password=False)


def _redacted(db_url: str) -> str:
    return sqlalchemy.engine.make_url(db_url).render_as_string(hide_password=True)


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """The pysqlite driver manages transactions on its own and breaks
    SAVEPOINT. Hand transaction control back to SQLAlchemy."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN")
