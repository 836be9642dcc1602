from typing import List, Optional

from sqlalchemy import and_, or_

from config import settings
from database.database import session_scope
from database.models import QuestRecord
from database.schemas import Coordinate, Material, Objective, Quest
from services.geo import GeohashRange, encode_geohash
from services.proximity import Page
from services.repository import DocumentRepository


class QuestRepository(DocumentRepository):
    collection = "quests"
    record = QuestRecord
    key = "id"
    schema = Quest

    def __init__(self, session_factory, feed, geohash_precision: int = None):
        super().__init__(session_factory, feed)
        self.geohash_precision = geohash_precision or settings.GEOHASH_PRECISION

    def to_entity(self, row: QuestRecord) -> Quest:
        return Quest(
            id=row.id,
            owner_id=row.owner_id,
            title=row.title or "",
            description=row.description or "",
            coordinate_start=Coordinate(latitude=row.latitude, longitude=row.longitude),
            objectives=[Objective.model_validate(o) for o in row.objectives or []],
            materials=[Material.model_validate(m) for m in row.materials or []],
            total_length_minutes=row.total_length_minutes or 0,
            hidden=bool(row.hidden),
            recurring=bool(row.recurring),
        )

    def to_columns(self, quest: Quest) -> dict:
        start = quest.coordinate_start
        return {
            "id": quest.id,
            "owner_id": quest.owner_id,
            "title": quest.title,
            "description": quest.description,
            "latitude": start.latitude,
            "longitude": start.longitude,
            "geohash": encode_geohash(start.latitude, start.longitude, self.geohash_precision),
            "objectives": [o.model_dump(mode="json") for o in quest.objectives],
            "materials": [m.model_dump(mode="json") for m in quest.materials],
            "total_length_minutes": quest.total_length_minutes,
            "total_cost": quest.total_cost,
            "hidden": quest.hidden,
            "recurring": quest.recurring,
        }

    def set_hidden(self, quest_id: str, hidden: bool) -> Quest:
        return self.update(quest_id, {"hidden": hidden})

    def list_ids_by_owner(self, owner_id: str) -> List[str]:
        """Every quest the user owns, hidden ones included."""
        with session_scope(self.session_factory) as db:
            rows = (
                db.query(QuestRecord.id)
                .filter(QuestRecord.owner_id == owner_id)
                .order_by(QuestRecord.created_at, QuestRecord.id)
                .all()
            )
            return [r.id for r in rows]

    def fetch_geohash_page(self, sub_query: GeohashRange, cursor, page_size: int) -> Page:
        """
        Next page of visible quests whose geohash lies in `sub_query`, ordered by
        (geohash, id) and resuming strictly after `cursor`.
        """
        with session_scope(self.session_factory) as db:
            query = db.query(QuestRecord).filter(
                QuestRecord.geohash >= sub_query.start,
                QuestRecord.geohash <= sub_query.end,
                QuestRecord.hidden == False,
            )
            if cursor is not None:
                last_geohash, last_id = cursor
                query = query.filter(or_(
                    QuestRecord.geohash > last_geohash,
                    and_(QuestRecord.geohash == last_geohash, QuestRecord.id > last_id),
                ))
            rows = query.order_by(QuestRecord.geohash, QuestRecord.id).limit(page_size).all()
            items = [self.to_entity(r) for r in rows]
            next_cursor = (rows[-1].geohash, rows[-1].id) if rows else None
        return Page(items=items, next_cursor=next_cursor)

    def browse(self, cost_ascending: Optional[bool] = None, recurring: Optional[bool] = None,
               limit: int = 20, offset: int = 0) -> List[Quest]:
        """Visible quests, optionally filtered by recurrence and sorted by cost."""
        with session_scope(self.session_factory) as db:
            query = db.query(QuestRecord).filter(QuestRecord.hidden == False)
            if recurring is not None:
                query = query.filter(QuestRecord.recurring == recurring)
            if cost_ascending is True:
                query = query.order_by(QuestRecord.total_cost.asc(), QuestRecord.id)
            elif cost_ascending is False:
                query = query.order_by(QuestRecord.total_cost.desc(), QuestRecord.id)
            else:
                query = query.order_by(QuestRecord.created_at, QuestRecord.id)
            rows = query.offset(offset).limit(limit).all()
            return [self.to_entity(r) for r in rows]
