import logging
from typing import Callable, List, Set, Tuple

from database.database import session_scope
from database.models import RelationshipRecord
from database.schemas import RelationshipKind
from services.errors import AlreadyExists
from services.events import ChangeFeed, Subscription

logger = logging.getLogger(__name__)

Pair = Tuple[str, RelationshipKind]


class RelationshipStore:
    """
    Many-to-many (user, quest, kind) rows. The single source of truth for list
    membership: watchlists, created/completed/failed quests.
    """

    def __init__(self, session_factory, feed: ChangeFeed):
        self.session_factory = session_factory
        self.feed = feed

    @staticmethod
    def topic(user_id: str, kind: RelationshipKind):
        return ("relationships", user_id, RelationshipKind(kind).value)

    def _query(self, db, user_id: str, kind: RelationshipKind):
        return db.query(RelationshipRecord).filter(
            RelationshipRecord.user_id == user_id,
            RelationshipRecord.kind == RelationshipKind(kind).value,
        )

    def add(self, user_id: str, quest_id: str, kind: RelationshipKind) -> bool:
        """Idempotent insert. Returns False when the row already existed."""
        kind = RelationshipKind(kind)
        try:
            with session_scope(self.session_factory, conflict="duplicate relationship") as db:
                if self._query(db, user_id, kind).filter(RelationshipRecord.quest_id == quest_id).first():
                    return False
                db.add(RelationshipRecord(user_id=user_id, quest_id=quest_id, kind=kind.value))
        except AlreadyExists:
            # Lost a race with an identical insert
            return False
        logger.info("Added %s relationship %s -> %s", kind.value, user_id, quest_id)
        self._notify(user_id, kind)
        return True

    def remove(self, user_id: str, quest_id: str, kind: RelationshipKind) -> bool:
        kind = RelationshipKind(kind)
        with session_scope(self.session_factory) as db:
            deleted = self._query(db, user_id, kind).filter(RelationshipRecord.quest_id == quest_id).delete()
        if deleted:
            logger.info("Removed %s relationship %s -> %s", kind.value, user_id, quest_id)
            self._notify(user_id, kind)
        return bool(deleted)

    def _delete_where(self, criterion) -> Set[Pair]:
        with session_scope(self.session_factory) as db:
            rows = db.query(RelationshipRecord).filter(criterion).all()
            affected = {(r.user_id, RelationshipKind(r.kind)) for r in rows}
            for row in rows:
                db.delete(row)
        for user_id, kind in sorted(affected, key=lambda p: (p[0], p[1].value)):
            self._notify(user_id, kind)
        return affected

    def delete_all_for_quest(self, quest_id: str) -> Set[Pair]:
        """Removes every row referencing the quest. Returns the (user, kind) pairs touched."""
        affected = self._delete_where(RelationshipRecord.quest_id == quest_id)
        logger.info("Cascade removed relationships for quest %s (%d lists)", quest_id, len(affected))
        return affected

    def delete_all_for_user(self, user_id: str) -> Set[Pair]:
        affected = self._delete_where(RelationshipRecord.user_id == user_id)
        logger.info("Cascade removed relationships for user %s (%d lists)", user_id, len(affected))
        return affected

    def list_quest_ids(self, user_id: str, kind: RelationshipKind) -> List[str]:
        """Quest ids in insertion order."""
        with session_scope(self.session_factory) as db:
            rows = self._query(db, user_id, kind).order_by(RelationshipRecord.id).all()
            return [r.quest_id for r in rows]

    def count(self, user_id: str, kind: RelationshipKind, excluding_quest: str = None) -> int:
        with session_scope(self.session_factory) as db:
            query = self._query(db, user_id, kind)
            if excluding_quest is not None:
                query = query.filter(RelationshipRecord.quest_id != excluding_quest)
            return query.count()

    def pairs_for_quest(self, quest_id: str) -> Set[Pair]:
        """Every (user, kind) list that currently contains the quest."""
        with session_scope(self.session_factory) as db:
            rows = db.query(RelationshipRecord).filter(RelationshipRecord.quest_id == quest_id).all()
            return {(r.user_id, RelationshipKind(r.kind)) for r in rows}

    def subscribe(self, user_id: str, kind: RelationshipKind, callback: Callable[[List[str]], None]) -> Subscription:
        """
        Pushes the current quest-id list for (user, kind) now and after every
        add/remove touching that pair. Close the returned subscription to stop.
        """
        subscription = self.feed.subscribe(self.topic(user_id, kind), callback)
        callback(self.list_quest_ids(user_id, kind))
        return subscription

    def _notify(self, user_id: str, kind: RelationshipKind):
        topic = self.topic(user_id, kind)
        if self.feed.listener_count(topic):
            self.feed.publish(topic, self.list_quest_ids(user_id, kind))
