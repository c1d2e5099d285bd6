from __future__ import annotations

import os
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import URL, create_engine, event, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ulw.errors import StorageFailure
from ulw.log import getLogger

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.engine import Engine

T = TypeVar("T")
V = TypeVar("V")
W = TypeVar("W")


logger = getLogger(__name__)


def _enable_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


def sqlite_url(path: str) -> URL:
    """Returns the url for a sqlite database file. ':memory:' is supported."""

    if path != ":memory:":
        path = os.path.expanduser(path)
    return URL.create("sqlite", database=path)


class WalletDB:
    """
    Executes all database operations on one shared connection. Each operation
    holds the lock for its whole session, hence statements never overlap.
    """

    def __init__(self, url_database: URL | str):
        self._lock = threading.Lock()
        url = make_url(url_database)

        if url.get_backend_name() == "sqlite":
            # One connection shared by all threads, guarded by self._lock.
            self.engine: Engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(self.engine, "connect", _enable_sqlite_pragmas)
        else:
            self.engine = create_engine(url)

        self.session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @classmethod
    def from_path(cls, path: str) -> WalletDB:
        """
        Opens the sqlite database at path. The parent directory is created if
        it does not exist.
        """

        if path != ":memory:":
            dir_name = os.path.dirname(os.path.expanduser(path))
            if dir_name:
                try:
                    os.makedirs(dir_name, exist_ok=True)
                except OSError as e:
                    raise StorageFailure(f"cannot create '{dir_name}': {e}") from e

        return cls(sqlite_url(path))

    def create_base(self, base: type[DeclarativeBase]):
        """
        Creates all missing tables and indexes of the base. Safe to call on
        every start.
        """

        def create(session: Session) -> None:
            base.metadata.create_all(bind=session.connection())

        self._execute(create, needs_commit=True)

    def execute(self, func: Callable[[Session], T]) -> T:
        """
        Executes a callable in session and commits if the session has changes.
        """
        return self._execute(func)

    def _execute(
        self,
        func: Callable[[Session], T],
        needs_commit: bool = False,
    ) -> T:
        """
        The main executor for database operations. All SQLAlchemy errors are
        raised as StorageFailure. Nothing is retried.
        """

        with self._lock, self.session() as session:
            try:
                res = func(session)

                # Changes of the ORM are detected from the session state, DDL has
                # to be flagged by the caller.
                if session.new or session.dirty or session.deleted:
                    needs_commit = True

                if needs_commit:
                    session.commit()

                return res

            # The sqlite driver raises OverflowError for integers beyond 64 bit.
            except (SQLAlchemyError, OverflowError) as e:
                session.rollback()
                logger.error(f"Database operation failed: {e}")
                raise StorageFailure(str(e)) from e

            except Exception:
                session.rollback()
                raise

    def sel_all_to_list(
        self, qry: Select[tuple[T]], convert: Callable[[T], V]
    ) -> list[V]:
        """
        Executes qry query. Each element of the result is converted by the
        provided function 'convert' and stored in a list afterwards.
        """

        def get_data(session: Session) -> list[V]:
            result: Sequence[T] = session.execute(qry).scalars().all()
            return [convert(r) for r in result]

        return self._execute(get_data)

    def sel_first(
        self, qry: Select[tuple[T]], convert: Callable[[T], V], default: W = None
    ) -> V | W:
        """
        Returns the conversion with the callback of the first element of the query.
        If the first element is None, the default value is returned.
        """

        def get_data(session: Session) -> V | W:
            result = session.execute(qry).scalars().first()
            if result is None:
                return default
            return convert(result)

        return self._execute(get_data)

    def dispose(self) -> None:
        self.engine.dispose()
