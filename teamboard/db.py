"""
Store abstraction over a SQL database and an in-memory implementation.

Both stores expose the same four collections (users, teams, tasks, messages)
with the same contract, so repository code never needs to know which one is
active. A query is a mapping of field name to value; a list, tuple or set
value matches any of its members and ``None`` matches a null field.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    ContextManager,
    Dict,
    Generic,
    Iterator,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
)

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    String,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from teamboard.errors import StoreOperationFailed

logger = logging.getLogger(__name__)

Query = Mapping[str, Any]
RecordT = TypeVar("RecordT")

_MULTI_VALUE = (list, tuple, set, frozenset)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class UserRecord:
    id: str
    name: str
    password: str
    email: str = ""
    team_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        # The password never leaves the server.
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "teamId": self.team_id,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass
class TeamRecord:
    id: str
    name: str
    code: str
    leader_id: str
    members: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "leaderId": self.leader_id,
            "members": list(self.members),
            "createdAt": _isoformat(self.created_at),
        }


@dataclass
class TaskRecord:
    id: str
    title: str
    user_id: str
    description: str = ""
    priority: str = "easy"
    status: str = "todo"
    estimated_time: float = 30
    time_unit: str = "minutes"
    team_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "estimatedTime": self.estimated_time,
            "timeUnit": self.time_unit,
            "userId": self.user_id,
            "teamId": self.team_id,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass
class MessageRecord:
    id: str
    message: str
    user_id: str
    user_name: str
    team_id: str
    timestamp: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "message": self.message,
            "userId": self.user_id,
            "userName": self.user_name,
            "teamId": self.team_id,
            "timestamp": _isoformat(self.timestamp),
        }


class Collection(Protocol[RecordT]):
    """Uniform access to one entity kind."""

    def create(self, data: Mapping[str, Any]) -> RecordT:
        ...

    def find_one(self, query: Query) -> Optional[RecordT]:
        ...

    def find_many(
        self, query: Query, order_by: Optional[str] = None
    ) -> list[RecordT]:
        ...

    def update_by_id(
        self, record_id: str, patch: Mapping[str, Any]
    ) -> Optional[RecordT]:
        ...

    def update_many(self, query: Query, patch: Mapping[str, Any]) -> int:
        ...

    def delete_by_id(self, record_id: str) -> bool:
        ...

    def delete_many(self, query: Query) -> int:
        ...


class Store(Protocol):
    """Interface for persistence. Selected once at startup."""

    mode: str
    users: Collection[UserRecord]
    teams: Collection[TeamRecord]
    tasks: Collection[TaskRecord]
    messages: Collection[MessageRecord]

    def transaction(self) -> ContextManager["Store"]:
        """Yield a store whose writes all apply or none do."""
        ...


def _check_fields(record_cls: type, keys) -> None:
    known = {f.name for f in fields(record_cls)}
    unknown = set(keys) - known
    if unknown:
        raise ValueError(
            f"Unknown {record_cls.__name__} fields: {', '.join(sorted(unknown))}"
        )


def _sort_key(order_by: str) -> tuple[str, bool]:
    if order_by.startswith("-"):
        return order_by[1:], True
    return order_by, False


class InMemoryCollection(Generic[RecordT]):
    """Id-indexed table held in process memory.

    Stored records are never handed out; callers always get copies, and
    updates swap in a new record instead of mutating the stored one.
    """

    def __init__(
        self,
        record_cls: type,
        lock: threading.RLock,
        next_id: Callable[[], str],
    ):
        self.record_cls = record_cls
        self.rows: Dict[str, RecordT] = {}
        self._lock = lock
        self._next_id = next_id
        self.journal: Optional[list] = None

    def _remember(self, record_id: str) -> None:
        if self.journal is not None:
            self.journal.append((self, record_id, self.rows.get(record_id)))

    def _restore(self, record_id: str, previous: Optional[RecordT]) -> None:
        if previous is None:
            self.rows.pop(record_id, None)
        else:
            self.rows[record_id] = previous

    def _matches(self, record: RecordT, query: Query) -> bool:
        for key, expected in query.items():
            actual = getattr(record, key)
            if isinstance(expected, _MULTI_VALUE):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False
        return True

    def _select(self, query: Query) -> list[RecordT]:
        record_id = query.get("id")
        if len(query) == 1 and record_id is not None and not isinstance(
            record_id, _MULTI_VALUE
        ):
            record = self.rows.get(record_id)
            return [record] if record is not None else []
        return [r for r in self.rows.values() if self._matches(r, query)]

    def create(self, data: Mapping[str, Any]) -> RecordT:
        _check_fields(self.record_cls, data)
        with self._lock:
            record = self.record_cls(id=self._next_id(), **copy.deepcopy(dict(data)))
            self._remember(record.id)
            self.rows[record.id] = record
            return copy.deepcopy(record)

    def find_one(self, query: Query) -> Optional[RecordT]:
        with self._lock:
            matches = self._select(query)
            return copy.deepcopy(matches[0]) if matches else None

    def find_many(
        self, query: Query, order_by: Optional[str] = None
    ) -> list[RecordT]:
        with self._lock:
            matches = self._select(query)
            if order_by:
                key, reverse = _sort_key(order_by)
                matches = sorted(
                    matches, key=lambda r: getattr(r, key), reverse=reverse
                )
            return copy.deepcopy(matches)

    def update_by_id(
        self, record_id: str, patch: Mapping[str, Any]
    ) -> Optional[RecordT]:
        _check_fields(self.record_cls, patch)
        with self._lock:
            record = self.rows.get(record_id)
            if record is None:
                return None
            self._remember(record_id)
            updated = replace(record, **copy.deepcopy(dict(patch)))
            self.rows[record_id] = updated
            return copy.deepcopy(updated)

    def update_many(self, query: Query, patch: Mapping[str, Any]) -> int:
        _check_fields(self.record_cls, patch)
        with self._lock:
            matches = self._select(query)
            for record in matches:
                self._remember(record.id)
                self.rows[record.id] = replace(record, **copy.deepcopy(dict(patch)))
            return len(matches)

    def delete_by_id(self, record_id: str) -> bool:
        with self._lock:
            if record_id not in self.rows:
                return False
            self._remember(record_id)
            del self.rows[record_id]
            return True

    def delete_many(self, query: Query) -> int:
        with self._lock:
            matches = self._select(query)
            for record in matches:
                self._remember(record.id)
                del self.rows[record.id]
            return len(matches)


class InMemoryStore:
    """Process-memory store for development, tests and database outages."""

    mode = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._last_id = 0
        self._journal: Optional[list] = None
        self.users: InMemoryCollection[UserRecord] = InMemoryCollection(
            UserRecord, self._lock, self._next_id
        )
        self.teams: InMemoryCollection[TeamRecord] = InMemoryCollection(
            TeamRecord, self._lock, self._next_id
        )
        self.tasks: InMemoryCollection[TaskRecord] = InMemoryCollection(
            TaskRecord, self._lock, self._next_id
        )
        self.messages: InMemoryCollection[MessageRecord] = InMemoryCollection(
            MessageRecord, self._lock, self._next_id
        )

    def _collections(self) -> list[InMemoryCollection]:
        return [self.users, self.teams, self.tasks, self.messages]

    def _next_id(self) -> str:
        # Nanosecond clock, bumped so ids stay strictly increasing.
        with self._lock:
            self._last_id = max(time.time_ns(), self._last_id + 1)
            return str(self._last_id)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStore"]:
        """Hold the store lock; on error, undo the writes made inside it.

        Writes append the record they replace to a shared undo log, so a
        rollback touches only the rows that changed.
        """
        with self._lock:
            outermost = self._journal is None
            if outermost:
                self._journal = []
                for collection in self._collections():
                    collection.journal = self._journal
            mark = len(self._journal)
            try:
                yield self
            except BaseException:
                while len(self._journal) > mark:
                    collection, record_id, previous = self._journal.pop()
                    collection._restore(record_id, previous)
                raise
            finally:
                if outermost:
                    self._journal = None
                    for collection in self._collections():
                        collection.journal = None

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            for collection in self._collections():
                collection.rows.clear()


class SqlCollection(Generic[RecordT]):
    """SQLAlchemy-backed collection for one table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        row_cls: type,
        record_cls: type,
        session: Optional[Session] = None,
    ):
        self.session_factory = session_factory
        self.row_cls = row_cls
        self.record_cls = record_cls
        self._session = session

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        try:
            if self._session is not None:
                yield self._session
                self._session.flush()
            else:
                with self.session_factory() as session:
                    yield session
                    session.commit()
        except SQLAlchemyError as exc:
            logger.error("%s query failed: %s", self.row_cls.__tablename__, exc)
            raise StoreOperationFailed() from exc

    def _to_record(self, row) -> RecordT:
        values = {f.name: getattr(row, f.name) for f in fields(self.record_cls)}
        if "members" in values:
            values["members"] = list(values["members"] or [])
        for key, value in values.items():
            # SQLite drops the offset; every stored time is UTC.
            if isinstance(value, datetime) and value.tzinfo is None:
                values[key] = value.replace(tzinfo=timezone.utc)
        return self.record_cls(**values)

    def _where(self, query: Query) -> list:
        clauses = []
        for key, expected in query.items():
            column = getattr(self.row_cls, key)
            if isinstance(expected, _MULTI_VALUE):
                clauses.append(column.in_(list(expected)))
            elif expected is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == expected)
        return clauses

    def create(self, data: Mapping[str, Any]) -> RecordT:
        _check_fields(self.record_cls, data)
        record = self.record_cls(id=uuid.uuid4().hex, **copy.deepcopy(dict(data)))
        with self._session_scope() as session:
            session.add(self.row_cls(**asdict(record)))
        return record

    def find_one(self, query: Query) -> Optional[RecordT]:
        with self._session_scope() as session:
            stmt = select(self.row_cls).where(*self._where(query)).limit(1)
            row = session.execute(stmt).scalars().first()
            return self._to_record(row) if row is not None else None

    def find_many(
        self, query: Query, order_by: Optional[str] = None
    ) -> list[RecordT]:
        with self._session_scope() as session:
            stmt = select(self.row_cls).where(*self._where(query))
            if order_by:
                key, descending = _sort_key(order_by)
                column = getattr(self.row_cls, key)
                stmt = stmt.order_by(column.desc() if descending else column.asc())
            rows = session.execute(stmt).scalars().all()
            return [self._to_record(row) for row in rows]

    def update_by_id(
        self, record_id: str, patch: Mapping[str, Any]
    ) -> Optional[RecordT]:
        _check_fields(self.record_cls, patch)
        with self._session_scope() as session:
            row = session.get(self.row_cls, record_id)
            if row is None:
                return None
            for key, value in patch.items():
                setattr(row, key, copy.deepcopy(value))
            session.flush()
            return self._to_record(row)

    def update_many(self, query: Query, patch: Mapping[str, Any]) -> int:
        _check_fields(self.record_cls, patch)
        with self._session_scope() as session:
            stmt = (
                update(self.row_cls)
                .where(*self._where(query))
                .values(**dict(patch))
            )
            return session.execute(stmt).rowcount or 0

    def delete_by_id(self, record_id: str) -> bool:
        with self._session_scope() as session:
            row = session.get(self.row_cls, record_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def delete_many(self, query: Query) -> int:
        with self._session_scope() as session:
            stmt = (
                delete(self.row_cls)
                .where(*self._where(query))
            )
            return session.execute(stmt).rowcount or 0


class SqlStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    mode = "sql"

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        self._bind(None)

    def _bind(self, session: Optional[Session]) -> None:
        self._session = session
        self.users = SqlCollection(self.Session, UserRow, UserRecord, session)
        self.teams = SqlCollection(self.Session, TeamRow, TeamRecord, session)
        self.tasks = SqlCollection(self.Session, TaskRow, TaskRecord, session)
        self.messages = SqlCollection(
            self.Session, MessageRow, MessageRecord, session
        )

    @contextmanager
    def transaction(self) -> Iterator["SqlStore"]:
        if self._session is not None:
            yield self
            return
        with self.Session() as session:
            bound = copy.copy(self)
            bound._bind(session)
            try:
                yield bound
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Transaction failed: %s", exc)
                raise StoreOperationFailed() from exc
            except BaseException:
                session.rollback()
                raise

    def dispose(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=False, default="")
    password = Column(String, nullable=False)
    team_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class TeamRow(Base):
    __tablename__ = "teams"

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False)
    code = Column(String(6), nullable=False, unique=True, index=True)
    leader_id = Column(String(64), nullable=False)
    members = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)


class TaskRow(Base):
    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    priority = Column(String, nullable=False, default="easy")
    status = Column(String, nullable=False, default="todo")
    estimated_time = Column(Float, nullable=False, default=30)
    time_unit = Column(String, nullable=False, default="minutes")
    user_id = Column(String(64), nullable=False, index=True)
    team_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(String(64), primary_key=True)
    message = Column(String, nullable=False)
    user_id = Column(String(64), nullable=False)
    user_name = Column(String, nullable=False)
    team_id = Column(String(64), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
