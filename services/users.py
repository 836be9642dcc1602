from datetime import datetime

from database.models import UserRecord
from database.schemas import COUNTER_FIELDS, RelationshipKind, User
from services.auth import AuthIdentity
from services.repository import DocumentRepository


class UserRepository(DocumentRepository):
    collection = "users"
    record = UserRecord
    key = "user_id"
    schema = User

    def to_entity(self, row: UserRecord) -> User:
        return User(
            user_id=row.user_id,
            email=row.email,
            photo_url=row.photo_url,
            date_created=row.date_created,
            is_premium=bool(row.is_premium),
            num_quests_created=row.num_quests_created or 0,
            num_watchlist_quests=row.num_watchlist_quests or 0,
            num_quests_completed=row.num_quests_completed or 0,
            num_quests_failed=row.num_quests_failed or 0,
        )

    def to_columns(self, user: User) -> dict:
        columns = user.model_dump()
        if columns["date_created"] is None:
            columns["date_created"] = datetime.utcnow()
        return columns

    def create_from_auth(self, identity: AuthIdentity) -> User:
        """Brand new profile for a freshly signed-up account."""
        user = User(
            user_id=identity.user_id,
            email=identity.email,
            photo_url=identity.photo_url,
            date_created=datetime.utcnow(),
        )
        return self.create(user)

    def set_premium(self, user_id: str, is_premium: bool) -> User:
        return self.update(user_id, {"is_premium": is_premium})

    def toggle_premium(self, user_id: str) -> User:
        user = self.get(user_id)
        return self.set_premium(user_id, not user.is_premium)

    def set_counter(self, user_id: str, kind: RelationshipKind, value: int) -> User:
        return self.update(user_id, {COUNTER_FIELDS[RelationshipKind(kind)]: value})
