"""
Account lifecycle: profile creation and the multi-step account deletion.
"""
import logging
from typing import List

from database.schemas import User
from services.auth import AuthIdentity, AuthProvider
from services.errors import PartialCascadeFailure, QuestError
from services.user_quests import UserQuestService

logger = logging.getLogger(__name__)

DELETION_STEPS = ("auth", "relationships", "quests", "user")


class AccountService:

    def __init__(self, auth: AuthProvider, user_quests: UserQuestService):
        self.auth = auth
        self.user_quests = user_quests
        self.users = user_quests.users
        self.quests = user_quests.quests
        self.relationships = user_quests.relationships

    def create_profile(self, identity: AuthIdentity) -> User:
        return self.users.create_from_auth(identity)

    def load_current_user(self, identity: AuthIdentity) -> User:
        return self.users.get(identity.user_id)

    def toggle_premium(self, user_id: str) -> User:
        return self.users.toggle_premium(user_id)

    def delete_account(self, user_id: str) -> List[str]:
        """
        auth -> relationships -> owned quests -> user record.

        Every step is delete-if-exists, so after a PartialCascadeFailure the
        whole call can simply be repeated. Owned quests are found through their
        owner field rather than the "created" rows, so a rerun still finds them
        after the relationship step has run. The identity stays usable for this
        call alone until the user record is gone.
        """
        completed = []
        step = DELETION_STEPS[0]
        try:
            self.auth.delete_user(user_id)
            completed.append(step)

            step = "relationships"
            owned = self.quests.list_ids_by_owner(user_id)
            for quest_id in owned:
                # Other users' watchlist/completed rows pointing at this user's quests
                self.user_quests.release_quest(quest_id, skip_user=user_id)
            self.relationships.delete_all_for_user(user_id)
            completed.append(step)

            step = "quests"
            for quest_id in owned:
                self.quests.delete(quest_id)
            completed.append(step)

            step = "user"
            self.users.delete(user_id)
            self.auth.finish_deletion(user_id)
            completed.append(step)
        except QuestError as exc:
            logger.error("Account deletion for %s stopped at %s (done: %s)", user_id, step, completed)
            raise PartialCascadeFailure(step, completed, exc) from exc

        logger.info("Deleted account %s (%d quests)", user_id, len(owned))
        return completed
