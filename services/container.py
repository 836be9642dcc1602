from dataclasses import dataclass, field
from typing import Dict

from database.schemas import Coordinate
from services.accounts import AccountService
from services.auth import AuthProvider, TrustedHeaderAuth
from services.events import ChangeFeed
from services.proximity import ProximityFeed
from services.quests import QuestRepository
from services.relationships import RelationshipStore
from services.user_quests import UserQuestService
from services.users import UserRepository


@dataclass
class QuestServices:
    """Everything a presentation layer needs, built once per process."""
    feed: ChangeFeed
    auth: AuthProvider
    users: UserRepository
    quests: QuestRepository
    relationships: RelationshipStore
    user_quests: UserQuestService
    accounts: AccountService
    nearby_feeds: Dict[str, ProximityFeed] = field(default_factory=dict)

    def start_nearby(self, user_id: str, center: Coordinate, radius_m: float, page_size: int = None) -> ProximityFeed:
        """Replaces the user's proximity feed with a fresh one around `center`."""
        nearby = ProximityFeed(self.quests.fetch_geohash_page, page_size=page_size)
        nearby.initialize(center, radius_m)
        self.nearby_feeds[user_id] = nearby
        return nearby


def build_services(session_factory, auth: AuthProvider = None) -> QuestServices:
    feed = ChangeFeed()
    users = UserRepository(session_factory, feed)
    quests = QuestRepository(session_factory, feed)
    relationships = RelationshipStore(session_factory, feed)
    user_quests = UserQuestService(users, quests, relationships)
    auth = auth or TrustedHeaderAuth()
    return QuestServices(
        feed=feed,
        auth=auth,
        users=users,
        quests=quests,
        relationships=relationships,
        user_quests=user_quests,
        accounts=AccountService(auth, user_quests),
    )
