"""Record stores behind the checkout core.

Both backends expose the same small capability set (find_one, insert,
update_one, count, plus an atomic counter) and enforce the unique columns
declared on the SQLAlchemy models. The backend is picked once at startup by
``build_backend``.
"""

import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from sqlalchemy import DateTime, Numeric, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from orderdesk.database import make_session_factory
from orderdesk.errors import InternalStoreError
from orderdesk.models import Counter, Order, Payment

logger = logging.getLogger(__name__)


class StoreError(InternalStoreError):
    pass


class DuplicateRecordError(StoreError):
    pass


class Between:
    """Half-open range filter: ``start <= value < end``."""

    def __init__(self, start, end):
        self.start = start
        self.end = end

    def matches(self, value) -> bool:
        return value is not None and self.start <= value < self.end


def _now() -> datetime:
    return datetime.now()


class RecordStore(ABC):
    def __init__(self, model):
        self._model = model
        self._columns = list(model.__table__.columns)

    @abstractmethod
    def find_one(self, filters: dict) -> dict | None: ...

    @abstractmethod
    def insert(self, record: dict) -> dict:
        """Store a new record; raises DuplicateRecordError on a unique clash."""

    @abstractmethod
    def update_one(self, record_id: str, patch: dict, unless: dict | None = None) -> dict | None:
        """Apply ``patch`` unless any ``unless`` field currently holds the given value.

        Returns the updated record, or None when nothing matched.
        """

    @abstractmethod
    def count(self, filters: dict) -> int: ...

    def _prepare(self, record: dict) -> dict:
        names = {c.name for c in self._columns}
        unknown = set(record) - names
        if unknown:
            raise ValueError(f"Unknown fields for {self._model.__tablename__}: {sorted(unknown)}")

        now = _now()
        data = {}
        for column in self._columns:
            if column.name in record:
                data[column.name] = record[column.name]
            elif column.default is not None and column.default.is_scalar:
                data[column.name] = column.default.arg
            else:
                data[column.name] = None
        data["id"] = data.get("id") or uuid.uuid4().hex
        data["created_at"] = data.get("created_at") or now
        data["updated_at"] = data.get("updated_at") or now
        return data


class CounterStore(ABC):
    @abstractmethod
    def increment(self, name: str, seed=None) -> int:
        """Atomically add one to counter ``name`` and return the new value.

        A missing counter starts from ``seed()`` (or 0).
        """


# --- SQLAlchemy backend ---


class SqlRecordStore(RecordStore):
    def __init__(self, session_factory, model):
        super().__init__(model)
        self._session_factory = session_factory

    def _where(self, filters: dict) -> list:
        clauses = []
        for name, value in filters.items():
            column = getattr(self._model, name)
            if isinstance(value, Between):
                clauses.extend([column >= value.start, column < value.end])
            else:
                clauses.append(column == value)
        return clauses

    def _to_record(self, obj) -> dict:
        return {c.name: getattr(obj, c.name) for c in self._columns}

    def find_one(self, filters: dict) -> dict | None:
        try:
            with self._session_factory() as session:
                obj = session.execute(
                    select(self._model).where(*self._where(filters)).limit(1)
                ).scalars().first()
                return self._to_record(obj) if obj is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"find_one on {self._model.__tablename__} failed: {exc}") from exc

    def insert(self, record: dict) -> dict:
        data = self._prepare(record)
        try:
            with self._session_factory() as session:
                obj = self._model(**data)
                session.add(obj)
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise DuplicateRecordError(
                        f"Duplicate {self._model.__tablename__} record: {exc.orig}"
                    ) from exc
                return self._to_record(obj)
        except SQLAlchemyError as exc:
            raise StoreError(f"insert into {self._model.__tablename__} failed: {exc}") from exc

    def update_one(self, record_id: str, patch: dict, unless: dict | None = None) -> dict | None:
        guards = [getattr(self._model, name) != value for name, value in (unless or {}).items()]
        stmt = (
            update(self._model)
            .where(self._model.id == record_id, *guards)
            .values(**patch, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        try:
            with self._session_factory() as session:
                try:
                    matched = session.execute(stmt).rowcount
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise DuplicateRecordError(
                        f"Duplicate {self._model.__tablename__} record: {exc.orig}"
                    ) from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"update on {self._model.__tablename__} failed: {exc}") from exc

        if not matched:
            return None
        return self.find_one({"id": record_id})

    def count(self, filters: dict) -> int:
        try:
            with self._session_factory() as session:
                return session.execute(
                    select(func.count()).select_from(self._model).where(*self._where(filters))
                ).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError(f"count on {self._model.__tablename__} failed: {exc}") from exc


class SqlCounterStore(CounterStore):
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def increment(self, name: str, seed=None) -> int:
        bump = (
            update(Counter)
            .where(Counter.name == name)
            .values(value=Counter.value + 1)
            .returning(Counter.value)
            .execution_options(synchronize_session=False)
        )
        try:
            # second pass covers another process creating the row first
            for _ in range(2):
                with self._session_factory() as session:
                    value = session.execute(bump).scalar_one_or_none()
                    session.commit()
                if value is not None:
                    return value

                start = seed() if seed else 0
                with self._session_factory() as session:
                    session.add(Counter(name=name, value=start + 1))
                    try:
                        session.commit()
                        return start + 1
                    except IntegrityError:
                        session.rollback()
        except SQLAlchemyError as exc:
            raise StoreError(f"increment of counter {name} failed: {exc}") from exc
        raise StoreError(f"Could not increment counter {name}")


# --- JSON flat-file backend ---


class JsonFileDatabase:
    """One JSON document on disk holding every collection.

    All reads and writes go through ``lock``; writes replace the file
    atomically.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.lock = threading.RLock()

    def load(self) -> dict:
        try:
            if not self.path.exists():
                return {}
            return json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            raise StoreError(f"Could not read {self.path}: {exc}") from exc

    def save(self, data: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + ".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StoreError(f"Could not write {self.path}: {exc}") from exc


class JsonRecordStore(RecordStore):
    def __init__(self, database: JsonFileDatabase, model):
        super().__init__(model)
        self._db = database
        self._collection = model.__tablename__
        self._unique = [c.name for c in self._columns if c.unique or c.primary_key]
        self._datetimes = {c.name for c in self._columns if isinstance(c.type, DateTime)}
        self._decimals = {c.name for c in self._columns if isinstance(c.type, Numeric)}

    def _encode(self, record: dict) -> dict:
        doc = {}
        for name, value in record.items():
            if value is not None and name in self._datetimes:
                value = value.isoformat()
            elif value is not None and name in self._decimals:
                value = str(value)
            doc[name] = value
        return doc

    def _decode(self, doc: dict) -> dict:
        record = {}
        for column in self._columns:
            value = doc.get(column.name)
            if value is not None and column.name in self._datetimes:
                value = datetime.fromisoformat(value)
            elif value is not None and column.name in self._decimals:
                value = Decimal(value)
            record[column.name] = value
        return record

    @staticmethod
    def _matches(record: dict, filters: dict) -> bool:
        for name, value in filters.items():
            if isinstance(value, Between):
                if not value.matches(record.get(name)):
                    return False
            elif record.get(name) != value:
                return False
        return True

    def _check_unique(self, docs: list, doc: dict, skip_id: str | None = None) -> None:
        for field in self._unique:
            value = doc.get(field)
            if value is None:
                continue
            for other in docs:
                if other.get("id") != skip_id and other.get(field) == value:
                    raise DuplicateRecordError(
                        f"Duplicate {self._collection} record: {field}={value!r}"
                    )

    def _records(self) -> list:
        return [self._decode(doc) for doc in self._db.load().get(self._collection, [])]

    def find_one(self, filters: dict) -> dict | None:
        with self._db.lock:
            for record in self._records():
                if self._matches(record, filters):
                    return record
        return None

    def insert(self, record: dict) -> dict:
        doc = self._encode(self._prepare(record))
        with self._db.lock:
            data = self._db.load()
            docs = data.setdefault(self._collection, [])
            self._check_unique(docs, doc)
            docs.append(doc)
            self._db.save(data)
        return self._decode(doc)

    def update_one(self, record_id: str, patch: dict, unless: dict | None = None) -> dict | None:
        with self._db.lock:
            data = self._db.load()
            docs = data.setdefault(self._collection, [])
            for index, doc in enumerate(docs):
                if doc.get("id") != record_id:
                    continue
                current = self._decode(doc)
                if any(current.get(name) == value for name, value in (unless or {}).items()):
                    return None
                current.update(patch)
                current["updated_at"] = _now()
                updated = self._encode(current)
                self._check_unique(docs, updated, skip_id=record_id)
                docs[index] = updated
                self._db.save(data)
                return self._decode(updated)
        return None

    def count(self, filters: dict) -> int:
        with self._db.lock:
            return sum(1 for record in self._records() if self._matches(record, filters))


class JsonCounterStore(CounterStore):
    def __init__(self, database: JsonFileDatabase):
        self._db = database

    def increment(self, name: str, seed=None) -> int:
        with self._db.lock:
            data = self._db.load()
            counters = data.setdefault("counters", {})
            if name not in counters:
                counters[name] = seed() if seed else 0
            counters[name] += 1
            self._db.save(data)
            return counters[name]


@dataclass
class Backend:
    payments: RecordStore
    orders: RecordStore
    counters: CounterStore


def build_backend(settings) -> Backend:
    if settings.storage_backend == "json":
        logger.info("Using JSON file storage at %s", settings.json_store_path)
        database = JsonFileDatabase(settings.json_store_path)
        return Backend(
            payments=JsonRecordStore(database, Payment),
            orders=JsonRecordStore(database, Order),
            counters=JsonCounterStore(database),
        )
    if settings.storage_backend == "sql":
        logger.info("Using SQL storage")
        session_factory = make_session_factory(settings.database_url)
        return Backend(
            payments=SqlRecordStore(session_factory, Payment),
            orders=SqlRecordStore(session_factory, Order),
            counters=SqlCounterStore(session_factory),
        )
    raise RuntimeError(f"Unknown STORAGE_BACKEND {settings.storage_backend!r}; expected 'sql' or 'json'")
