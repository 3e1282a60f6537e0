"""
Document store backing team governance.

Documents are addressed as ``"<collection>/<doc_id>"``. Each carries a version
stamp that starts at 1 and increases on every write. Passing ``if_version``
makes a write conditional on that stamp; ``if_version=0`` means the document
must not exist yet. There are no transactions spanning more than one document.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete as sql_delete, update as sql_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from .models.document import Document

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The store could not complete a call."""


class VersionConflict(StoreError):
    """A conditional write found the document at a different version."""

    def __init__(self, path: str, expected: Optional[int], actual: Optional[int]):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"{path}: expected version {expected}, found {actual}")


@dataclass(frozen=True)
class Snapshot:
    """A document as read from the store."""
    path: str
    version: int
    data: Dict[str, Any]


def split_path(path: str) -> Tuple[str, str]:
    collection, sep, doc_id = path.partition("/")
    if not sep or not collection or not doc_id:
        raise ValueError(f"Invalid document path: {path!r}")
    return collection, doc_id


class RosterStore(ABC):
    """Interface the governance services depend on."""

    @abstractmethod
    async def get(self, path: str) -> Optional[Snapshot]:
        ...

    @abstractmethod
    async def set(self, path: str, data: Dict[str, Any], if_version: Optional[int] = None) -> int:
        """Create or replace a document; returns the new version."""

    @abstractmethod
    async def update(self, path: str, fields: Dict[str, Any], if_version: Optional[int] = None) -> bool:
        """Merge top-level fields into a document; False when it does not exist."""

    @abstractmethod
    async def delete(self, path: str, if_version: Optional[int] = None) -> bool:
        """Delete a document; False when it does not exist."""

    @abstractmethod
    async def query(self, collection: str, field: str, value: Any) -> List[Snapshot]:
        """Documents of a collection whose top-level ``field`` equals ``value``."""


class SqlRosterStore(RosterStore):
    """RosterStore kept in a single SQL table through SQLModel."""

    def __init__(self, engine):
        self.engine = engine

    @contextmanager
    def _session(self):
        try:
            with Session(self.engine) as db:
                yield db
        except SQLAlchemyError as exc:
            logger.error("Store call failed: %s", exc)
            raise StoreError(str(exc)) from exc

    @staticmethod
    def _fetch(db: Session, collection: str, doc_id: str) -> Optional[Document]:
        statement = select(Document).where(
            Document.collection == collection,
            Document.doc_id == doc_id
        )
        return db.exec(statement).first()

    @staticmethod
    def _snapshot(doc: Document) -> Snapshot:
        return Snapshot(
            path=f"{doc.collection}/{doc.doc_id}",
            version=doc.version,
            data=dict(doc.data)
        )

    def _swap(self, db: Session, path: str, doc: Document, data: Dict[str, Any], expected: Optional[int]) -> int:
        """Replace a document's data, guarded by its version when ``expected`` is given."""
        statement = sql_update(Document).where(Document.id == doc.id)
        if expected is not None:
            statement = statement.where(Document.version == expected)
        statement = statement.values(
            data=data,
            version=Document.version + 1,
            updated_at=datetime.now(UTC)
        )

        result = db.connection().execute(statement)
        if result.rowcount != 1:
            db.rollback()
            current = self._fetch(db, doc.collection, doc.doc_id)
            raise VersionConflict(path, expected, current.version if current else None)
        db.commit()

        # Read back the stamp the database assigned
        db.expire_all()
        return self._fetch(db, doc.collection, doc.doc_id).version

    async def get(self, path: str) -> Optional[Snapshot]:
        collection, doc_id = split_path(path)
        with self._session() as db:
            doc = self._fetch(db, collection, doc_id)
            return self._snapshot(doc) if doc else None

    async def set(self, path: str, data: Dict[str, Any], if_version: Optional[int] = None) -> int:
        collection, doc_id = split_path(path)
        with self._session() as db:
            doc = self._fetch(db, collection, doc_id)

            if doc is None:
                if if_version not in (None, 0):
                    raise VersionConflict(path, if_version, None)
                db.add(Document(collection=collection, doc_id=doc_id, data=data))
                try:
                    db.commit()
                except IntegrityError as exc:
                    # Created by someone else between our read and insert
                    db.rollback()
                    raise VersionConflict(path, if_version, None) from exc
                return 1

            if if_version == 0:
                raise VersionConflict(path, 0, doc.version)
            return self._swap(db, path, doc, data, if_version)

    async def update(self, path: str, fields: Dict[str, Any], if_version: Optional[int] = None) -> bool:
        collection, doc_id = split_path(path)
        with self._session() as db:
            doc = self._fetch(db, collection, doc_id)
            if doc is None:
                if if_version:
                    raise VersionConflict(path, if_version, None)
                return False

            if if_version is not None and if_version != doc.version:
                raise VersionConflict(path, if_version, doc.version)

            # Guard on the version we merged into so a concurrent write is not lost
            self._swap(db, path, doc, {**doc.data, **fields}, doc.version)
            return True

    async def delete(self, path: str, if_version: Optional[int] = None) -> bool:
        collection, doc_id = split_path(path)
        with self._session() as db:
            statement = sql_delete(Document).where(
                Document.collection == collection,
                Document.doc_id == doc_id
            )
            if if_version is not None:
                statement = statement.where(Document.version == if_version)

            result = db.connection().execute(statement)
            if result.rowcount == 1:
                db.commit()
                return True

            db.rollback()
            if if_version is not None:
                current = self._fetch(db, collection, doc_id)
                if current is not None:
                    raise VersionConflict(path, if_version, current.version)
            return False

    async def query(self, collection: str, field: str, value: Any) -> List[Snapshot]:
        with self._session() as db:
            statement = (
                select(Document)
                .where(Document.collection == collection)
                .order_by(Document.id)
            )
            docs = db.exec(statement).all()

            # JSON fields are filtered in Python to stay portable across backends
            return [self._snapshot(doc) for doc in docs if doc.data.get(field) == value]
