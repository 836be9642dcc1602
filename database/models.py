from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class UserRecord(Base):
    """
    One document per authenticated user, keyed by the auth provider's subject id.
    List membership lives in `relationships`; only derived counters are kept here.
    """
    __tablename__ = 'users'

    user_id = Column(String, primary_key=True, index=True)
    email = Column(String, nullable=True)
    photo_url = Column(String, nullable=True)
    date_created = Column(DateTime, default=datetime.utcnow)
    is_premium = Column(Boolean, default=False)

    # Counters (recomputed from relationships, never incremented blindly)
    num_quests_created = Column(Integer, default=0)
    num_watchlist_quests = Column(Integer, default=0)
    num_quests_completed = Column(Integer, default=0)
    num_quests_failed = Column(Integer, default=0)


class QuestRecord(Base):
    """
    A published quest. Objectives and materials are embedded, so the quest
    and all of its objectives are written in a single row.
    """
    __tablename__ = 'quests'

    id = Column(String, primary_key=True, index=True)
    owner_id = Column(String, index=True)
    title = Column(String)
    description = Column(Text, nullable=True)

    # Location
    latitude = Column(Float)
    longitude = Column(Float)
    geohash = Column(String, index=True)

    # Embedded documents
    objectives = Column(JSON, default=list)
    materials = Column(JSON, default=list)

    total_length_minutes = Column(Integer, default=0)
    total_cost = Column(Float, default=0.0)
    hidden = Column(Boolean, default=False)
    recurring = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class RelationshipRecord(Base):
    """
    (user, quest, kind) association. The autoincrement id gives insertion order.
    """
    __tablename__ = 'relationships'
    __table_args__ = (UniqueConstraint('user_id', 'quest_id', 'kind', name='uq_relationship'),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True)
    quest_id = Column(String, index=True)
    kind = Column(String)  # created | watchlist | completed | failed
    created_at = Column(DateTime, default=datetime.utcnow)
