"""
Coordinates relationship writes with the derived per-user counters and the
quest-level cascades (delete, hide).
"""
import logging
from typing import Iterable, List, Set

from database.schemas import Coordinate, Material, Objective, Quest, RelationshipKind
from services.authoring import QuestDraft
from services.errors import Forbidden, NotFound, PartialCascadeFailure, QuestError
from services.quests import QuestRepository
from services.relationships import Pair, RelationshipStore
from services.users import UserRepository

logger = logging.getLogger(__name__)


class UserQuestService:

    def __init__(self, users: UserRepository, quests: QuestRepository, relationships: RelationshipStore):
        self.users = users
        self.quests = quests
        self.relationships = relationships

    # Membership

    def add(self, user_id: str, quest_id: str, kind: RelationshipKind) -> bool:
        if not self.users.exists(user_id):
            raise NotFound(f"users/{user_id} does not exist")
        if not self.quests.exists(quest_id):
            raise NotFound(f"quests/{quest_id} does not exist")
        added = self.relationships.add(user_id, quest_id, kind)
        # Recompute even when nothing was added: repairs a counter left stale by an earlier failure
        self.sync_counters([(user_id, RelationshipKind(kind))])
        return added

    def remove(self, user_id: str, quest_id: str, kind: RelationshipKind) -> bool:
        removed = self.relationships.remove(user_id, quest_id, kind)
        self.sync_counters([(user_id, RelationshipKind(kind))])
        return removed

    def add_to_watchlist(self, user_id: str, quest_id: str) -> bool:
        return self.add(user_id, quest_id, RelationshipKind.WATCHLIST)

    def remove_from_watchlist(self, user_id: str, quest_id: str) -> bool:
        return self.remove(user_id, quest_id, RelationshipKind.WATCHLIST)

    def record_result(self, user_id: str, quest_id: str, failed: bool) -> bool:
        kind = RelationshipKind.FAILED if failed else RelationshipKind.COMPLETED
        return self.add(user_id, quest_id, kind)

    def list_quest_ids(self, user_id: str, kind: RelationshipKind) -> List[str]:
        """Empty list for a user with no quests of this kind; NotFound for no such user."""
        if not self.users.exists(user_id):
            raise NotFound(f"users/{user_id} does not exist")
        return self.relationships.list_quest_ids(user_id, kind)

    def list_quests(self, user_id: str, kind: RelationshipKind) -> List[Quest]:
        return self.quests.get_many(self.list_quest_ids(user_id, kind))

    def sync_counters(self, pairs: Iterable[Pair], excluding_quest: str = None):
        """
        Sets each user's counter to the live relationship count, optionally as if
        `excluding_quest` were already gone. Missing users are skipped.
        """
        for user_id, kind in pairs:
            try:
                count = self.relationships.count(user_id, kind, excluding_quest=excluding_quest)
                self.users.set_counter(user_id, kind, count)
            except NotFound:
                logger.debug("Skipping counter sync for missing user %s", user_id)

    # Quest lifecycle

    def _owned(self, user_id: str, quest_id: str) -> Quest:
        quest = self.quests.get(quest_id)
        if quest.owner_id != user_id:
            raise Forbidden("only the quest's creator can change it")
        return quest

    def set_hidden(self, user_id: str, quest_id: str, hidden: bool) -> Quest:
        self._owned(user_id, quest_id)
        return self.quests.set_hidden(quest_id, hidden)

    def edit_quest(self, user_id: str, quest_id: str, title: str = None, description: str = None,
                   coordinate_start: Coordinate = None, objectives: List[Objective] = None,
                   materials: List[Material] = None, recurring: bool = None, hidden: bool = None) -> Quest:
        """
        Owner-only re-upload of a published quest. Fields left as None keep their
        stored value. Objectives go through the same cap, numbering and
        validation as a new draft; the stored quest is overwritten in one write,
        or left untouched if anything is invalid.
        """
        draft = QuestDraft.from_quest(self._owned(user_id, quest_id))
        if objectives is not None:
            draft.replace_objectives(objectives)
        if materials is not None:
            draft.materials = []
            for material in materials:
                draft.add_material(material.name, material.cost)
        if title is not None:
            draft.title = title
        if description is not None:
            draft.description = description
        if coordinate_start is not None:
            draft.coordinate_start = coordinate_start
        if recurring is not None:
            draft.recurring = recurring
        if hidden is not None:
            draft.hidden = hidden
        return draft.save(self.quests)

    def release_quest(self, quest_id: str, skip_user: str = None) -> Set[Pair]:
        """
        Drops every relationship row for the quest. Counters are lowered before
        the rows go, so a rerun after any failure still finds the rows and the
        users they belong to.
        """
        pairs = {p for p in self.relationships.pairs_for_quest(quest_id) if p[0] != skip_user}
        self.sync_counters(pairs, excluding_quest=quest_id)
        self.relationships.delete_all_for_quest(quest_id)
        self.sync_counters(pairs)
        return pairs

    def delete_quest(self, user_id: str, quest_id: str) -> List[str]:
        """
        Removes the quest for every user: derived counters first, then the
        relationship rows, then the quest document. Safe to re-run after a failure.
        """
        try:
            self._owned(user_id, quest_id)
        except NotFound:
            # Already gone; finish any relationship cleanup a previous run left behind
            pass
        return self.cascade_delete_quest(quest_id)

    def cascade_delete_quest(self, quest_id: str) -> List[str]:
        completed = []
        step = "counters"
        try:
            pairs = self.relationships.pairs_for_quest(quest_id)
            self.sync_counters(pairs, excluding_quest=quest_id)
            completed.append(step)
            step = "relationships"
            self.relationships.delete_all_for_quest(quest_id)
            self.sync_counters(pairs)
            completed.append(step)
            step = "quest"
            self.quests.delete(quest_id)
            completed.append(step)
        except QuestError as exc:
            logger.error("Deleting quest %s stopped at %s", quest_id, step)
            raise PartialCascadeFailure(step, completed, exc) from exc
        return completed
