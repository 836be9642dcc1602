import pytest

from database.database import init_db, make_engine, make_session_factory
from database.schemas import Coordinate, Objective, Quest, User
from services.container import build_services


@pytest.fixture
def engine(tmp_path):
    # File-backed so sub-fetches running in worker threads get their own connections
    engine = make_engine(f"sqlite:///{tmp_path / 'quests_test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def services(session_factory):
    return build_services(session_factory)


@pytest.fixture
def make_user(services):
    def _make(user_id="alice", **fields):
        return services.users.create(User(user_id=user_id, **fields))
    return _make


@pytest.fixture
def quest_factory():
    counter = {"n": 0}

    def _build(owner_id="alice", latitude=0.0, longitude=0.0, **fields):
        counter["n"] += 1
        fields.setdefault("id", f"quest-{counter['n']:03d}")
        fields.setdefault("title", f"Quest {counter['n']}")
        fields.setdefault("objectives", [
            Objective(number=1, title="Find the bench", description="By the pond", solution="1234"),
        ])
        return Quest(
            owner_id=owner_id,
            coordinate_start=Coordinate(latitude=latitude, longitude=longitude),
            **fields,
        )
    return _build


@pytest.fixture
def make_quest(services, quest_factory):
    def _make(*args, **kwargs):
        return services.quests.create(quest_factory(*args, **kwargs))
    return _make
