"""
In-memory quest builder used by the create-quest flow.

Nothing touches the store until `publish`, which writes the quest and all of
its objectives as one document.
"""
import logging
import uuid
from typing import List, Optional

from config import settings
from database.schemas import (
    PLAYABLE_OBJECTIVE_TYPES,
    Coordinate,
    Material,
    Objective,
    ObjectiveType,
    Quest,
    RelationshipKind,
)
from services.errors import FieldError, TooMany, ValidationError

logger = logging.getLogger(__name__)


class QuestDraft:

    def __init__(self, owner_id: str, coordinate_start: Coordinate, title: str = "", description: str = "",
                 recurring: bool = False, hidden: bool = False, max_objectives: int = None):
        self.id = str(uuid.uuid4())
        self.owner_id = owner_id
        self.coordinate_start = coordinate_start
        self.title = title
        self.description = description
        self.recurring = recurring
        self.hidden = hidden
        self.max_objectives = max_objectives or settings.MAX_OBJECTIVES
        self.objectives: List[Objective] = []
        self.materials: List[Material] = []
        self.total_length_minutes = 0

    @classmethod
    def from_quest(cls, quest: Quest, max_objectives: int = None) -> "QuestDraft":
        """Reopens a published quest for editing under the same id and owner."""
        draft = cls(
            owner_id=quest.owner_id,
            coordinate_start=quest.coordinate_start,
            title=quest.title,
            description=quest.description,
            recurring=quest.recurring,
            hidden=quest.hidden,
            max_objectives=max_objectives,
        )
        draft.id = quest.id
        draft.replace_objectives(quest.objectives)
        draft.materials = list(quest.materials)
        return draft

    # Objectives

    def add_objective(self, objective: Objective) -> Objective:
        if len(self.objectives) >= self.max_objectives:
            raise TooMany(f"a quest can have at most {self.max_objectives} objectives")
        self._check_type(len(self.objectives) + 1, objective.type)
        objective = objective.model_copy(update={"number": len(self.objectives) + 1, "quest_id": self.id})
        self.objectives.append(objective)
        self.edit_total_length(objective)
        return objective

    def edit_objective(self, number: int, **changes) -> Objective:
        """Replaces fields of objective `number` and re-derives the total length."""
        index = self._index(number)
        previous = self.objectives[index]
        changes.pop("number", None)
        changes.pop("quest_id", None)
        updated = Objective.model_validate({**previous.model_dump(), **changes})
        self._check_type(number, updated.type)
        self.objectives[index] = updated
        self.edit_total_length(updated, previous.hours_constraint, previous.minutes_constraint)
        return updated

    def replace_objectives(self, objectives: List[Objective]):
        """Drops every objective and adds `objectives` in order, renumbered from 1."""
        self.objectives = []
        self.total_length_minutes = 0
        for objective in objectives:
            self.add_objective(objective)

    def remove_objective(self, number: int) -> Objective:
        index = self._index(number)
        removed = self.objectives.pop(index)
        self.total_length_minutes -= removed.time_box_minutes
        # Keep numbering dense
        self.objectives = [o.model_copy(update={"number": i + 1}) for i, o in enumerate(self.objectives)]
        return removed

    @staticmethod
    def _check_type(number: int, objective_type: ObjectiveType):
        if objective_type not in PLAYABLE_OBJECTIVE_TYPES:
            raise ValidationError([FieldError(number, "type", f"{objective_type.value} is not supported yet")])

    def _index(self, number: int) -> int:
        if not 1 <= number <= len(self.objectives):
            raise IndexError(f"no objective number {number}")
        return number - 1

    def edit_total_length(self, objective: Objective, previous_hours: Optional[int] = None,
                          previous_minutes: Optional[int] = None):
        """
        Adds the objective's time-box to the aggregate. When editing, pass the old
        constraint so it is subtracted first; unconstrained objectives add zero.
        """
        previous = (previous_hours or 0) * 60 + (previous_minutes or 0)
        self.total_length_minutes = self.total_length_minutes - previous + objective.time_box_minutes

    # Materials

    def add_material(self, name: str, cost: float = 0.0) -> Material:
        errors = []
        if not name or not name.strip():
            errors.append(FieldError(None, "material.name", "must not be empty"))
        if cost < 0:
            errors.append(FieldError(None, "material.cost", "must not be negative"))
        if errors:
            raise ValidationError(errors)
        material = Material(name=name.strip(), cost=cost)
        self.materials.append(material)
        return material

    def remove_material(self, index: int) -> Material:
        return self.materials.pop(index)

    @property
    def total_cost(self) -> float:
        return sum(m.cost for m in self.materials)

    # Publishing

    def validate(self) -> List[FieldError]:
        errors = []
        if not self.title.strip():
            errors.append(FieldError(None, "title", "must not be empty"))
        if not self.objectives:
            errors.append(FieldError(None, "objectives", "add at least one objective"))
        if self.total_length_minutes < 0:
            errors.append(FieldError(None, "total_length_minutes", "must not be negative"))
        for objective in self.objectives:
            for field in ("title", "description", "solution"):
                if not getattr(objective, field).strip():
                    errors.append(FieldError(objective.number, field, "must not be empty"))
        return errors

    def build(self) -> Quest:
        return Quest(
            id=self.id,
            owner_id=self.owner_id,
            title=self.title.strip(),
            description=self.description.strip(),
            coordinate_start=self.coordinate_start,
            objectives=list(self.objectives),
            materials=list(self.materials),
            total_length_minutes=self.total_length_minutes,
            hidden=self.hidden,
            recurring=self.recurring,
        )

    def publish(self, quests, user_quests=None) -> Quest:
        """
        Validates everything, then writes the quest in a single document write.
        The owner's "created" list is updated afterwards as a separate step.
        """
        errors = self.validate()
        if errors:
            raise ValidationError(errors)
        quest = quests.create(self.build())
        if user_quests is not None:
            user_quests.add(self.owner_id, quest.id, RelationshipKind.CREATED)
        logger.info("Published quest %s with %d objectives", quest.id, len(quest.objectives))
        return quest

    def save(self, quests) -> Quest:
        """Overwrites an already published quest with the draft, after the same validation as publish."""
        errors = self.validate()
        if errors:
            raise ValidationError(errors)
        quest = quests.update(self.id, self.build().model_dump())
        logger.info("Saved quest %s with %d objectives", quest.id, len(quest.objectives))
        return quest
