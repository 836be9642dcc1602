"""
Entity schemas for the quest app.

Each model is the application-side shape of a document in one collection:
- User  -> "users"
- Quest -> "quests" (Objectives and Materials are embedded)
Relationships are plain (user_id, quest_id, kind) rows and have no schema here.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RelationshipKind(str, Enum):
    CREATED = "created"
    WATCHLIST = "watchlist"
    COMPLETED = "completed"
    FAILED = "failed"


class ObjectiveType(str, Enum):
    CODE = "code"
    COMBINATION = "combination"
    # Reserved, not playable yet. QuestDraft refuses them when an objective is added or edited;
    # stored objectives are only checked for presence of a type.
    LOCATION = "location"
    PHOTO = "photo"


PLAYABLE_OBJECTIVE_TYPES = (ObjectiveType.CODE, ObjectiveType.COMBINATION)


class Coordinate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ObjectiveArea(BaseModel):
    center: Coordinate
    radius_m: float = Field(..., gt=0, description="Geofence radius in meters")


class Objective(BaseModel):
    quest_id: Optional[str] = Field(None, description="Owning quest id")
    number: int = Field(0, ge=0, description="1-based position within the quest")
    title: str = ""
    description: str = ""
    type: ObjectiveType = ObjectiveType.CODE
    solution: str = Field("", description="Code or combination the player must enter")
    hint: Optional[str] = None
    hours_constraint: Optional[int] = Field(None, ge=0)
    minutes_constraint: Optional[int] = Field(None, ge=0, lt=60)
    area: Optional[ObjectiveArea] = None

    @property
    def time_box_minutes(self) -> int:
        """Zero when the objective is unconstrained."""
        return (self.hours_constraint or 0) * 60 + (self.minutes_constraint or 0)


class Material(BaseModel):
    name: str = Field(..., min_length=1)
    cost: float = Field(0.0, ge=0)


class Quest(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    title: str = ""
    description: str = ""
    coordinate_start: Coordinate
    objectives: List[Objective] = Field(default_factory=list)
    materials: List[Material] = Field(default_factory=list)
    total_length_minutes: int = Field(0, ge=0)
    hidden: bool = False
    recurring: bool = False

    @property
    def total_cost(self) -> float:
        return sum(m.cost for m in self.materials)


class User(BaseModel):
    user_id: str = Field(..., description="Auth provider subject id")
    email: Optional[str] = None
    photo_url: Optional[str] = None
    date_created: Optional[datetime] = None
    is_premium: bool = False
    num_quests_created: int = 0
    num_watchlist_quests: int = 0
    num_quests_completed: int = 0
    num_quests_failed: int = 0


# User counter column for each relationship kind
COUNTER_FIELDS = {
    RelationshipKind.CREATED: "num_quests_created",
    RelationshipKind.WATCHLIST: "num_watchlist_quests",
    RelationshipKind.COMPLETED: "num_quests_completed",
    RelationshipKind.FAILED: "num_quests_failed",
}
