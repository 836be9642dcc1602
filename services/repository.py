"""
Shared CRUD + listener plumbing for the per-collection repositories.
"""
import logging
from typing import Callable, Iterable, List

from database.database import session_scope
from services.errors import AlreadyExists, NotFound
from services.events import ChangeFeed

logger = logging.getLogger(__name__)


class EntitySubscription:
    """
    Live view over a list of ids. The callback receives the full current list of
    entities (missing ids are skipped) on subscribe, whenever the id list is
    replaced, and whenever any watched entity is written or deleted.
    """

    def __init__(self, repository: "DocumentRepository", ids: Iterable[str], callback: Callable[[list], None]):
        self._repository = repository
        self._callback = callback
        self._listeners = []
        self.ids: List[str] = []
        self.closed = False
        self.set_ids(ids)

    def set_ids(self, ids: Iterable[str]):
        if self.closed:
            raise RuntimeError("subscription is closed")
        self._detach()
        self.ids = list(dict.fromkeys(ids))
        for entity_id in self.ids:
            self._listeners.append(self._repository.feed.subscribe(self._repository.topic(entity_id), self._emit))
        self._emit()

    def _emit(self, _payload=None):
        self._callback(self._repository.get_many(self.ids))

    def _detach(self):
        for listener in self._listeners:
            listener.close()
        self._listeners = []

    def close(self):
        if not self.closed:
            self._detach()
            self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class DocumentRepository:
    """
    One document per row, keyed by an opaque string id.
    Subclasses map between the Pydantic entity and the SQLAlchemy record.
    """

    collection = None  # topic prefix, e.g. "users"
    record = None  # SQLAlchemy model
    key = "id"  # primary key column / entity field
    schema = None  # Pydantic model

    def __init__(self, session_factory, feed: ChangeFeed):
        self.session_factory = session_factory
        self.feed = feed

    # Mapping

    def to_entity(self, row):
        raise NotImplementedError

    def to_columns(self, entity) -> dict:
        raise NotImplementedError

    def topic(self, entity_id: str):
        return (self.collection, entity_id)

    def _row(self, db, entity_id: str):
        return db.get(self.record, entity_id)

    # Reads

    def get(self, entity_id: str):
        with session_scope(self.session_factory) as db:
            row = self._row(db, entity_id)
            if row is None:
                raise NotFound(f"{self.collection}/{entity_id} does not exist")
            return self.to_entity(row)

    def exists(self, entity_id: str) -> bool:
        with session_scope(self.session_factory) as db:
            return self._row(db, entity_id) is not None

    def get_many(self, ids: Iterable[str]) -> list:
        """Entities for `ids` in the given order; ids with no document are skipped."""
        ids = list(ids)
        if not ids:
            return []
        column = getattr(self.record, self.key)
        with session_scope(self.session_factory) as db:
            rows = db.query(self.record).filter(column.in_(ids)).all()
            found = {getattr(r, self.key): self.to_entity(r) for r in rows}
        return [found[i] for i in ids if i in found]

    # Writes

    def create(self, entity):
        entity_id = getattr(entity, self.key)
        conflict = f"{self.collection}/{entity_id} already exists"
        with session_scope(self.session_factory, conflict=conflict) as db:
            if self._row(db, entity_id) is not None:
                raise AlreadyExists(conflict)
            db.add(self.record(**self.to_columns(entity)))
        logger.info("Created %s/%s", self.collection, entity_id)
        self.feed.publish(self.topic(entity_id), entity_id)
        return entity

    def update(self, entity_id: str, fields: dict):
        """Partial merge: fields not named in `fields` keep their stored value."""
        unknown = set(fields) - set(self.schema.model_fields)
        if unknown:
            raise ValueError(f"unknown fields for {self.collection}: {sorted(unknown)}")
        if self.key in fields and fields[self.key] != entity_id:
            raise ValueError(f"{self.key} cannot be changed")

        with session_scope(self.session_factory) as db:
            row = self._row(db, entity_id)
            if row is None:
                raise NotFound(f"{self.collection}/{entity_id} does not exist")
            current = self.to_entity(row)
            merged = self.schema.model_validate({**current.model_dump(), **fields})
            for column, value in self.to_columns(merged).items():
                setattr(row, column, value)
        self.feed.publish(self.topic(entity_id), entity_id)
        return merged

    def delete(self, entity_id: str) -> bool:
        """Delete-if-exists. Does not cascade to relationships."""
        with session_scope(self.session_factory) as db:
            row = self._row(db, entity_id)
            if row is None:
                return False
            db.delete(row)
        logger.info("Deleted %s/%s", self.collection, entity_id)
        self.feed.publish(self.topic(entity_id), entity_id)
        return True

    def subscribe_by_ids(self, ids: Iterable[str], callback: Callable[[list], None]) -> EntitySubscription:
        return EntitySubscription(self, ids, callback)
