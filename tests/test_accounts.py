import pytest

from database.schemas import COUNTER_FIELDS, RelationshipKind
from services.auth import AuthIdentity
from services.errors import AlreadyExists, Forbidden, PartialCascadeFailure, TransientStoreError, Unauthenticated

WATCH = RelationshipKind.WATCHLIST


@pytest.fixture
def world(services, make_quest):
    """alice owns q-a, bob owns q-b; each watches the other's quest."""
    accounts = services.accounts
    accounts.create_profile(AuthIdentity("alice", "alice@example.com"))
    accounts.create_profile(AuthIdentity("bob"))
    qa = make_quest(owner_id="alice", id="q-a")
    qb = make_quest(owner_id="bob", id="q-b")
    services.user_quests.add("alice", qa.id, RelationshipKind.CREATED)
    services.user_quests.add("bob", qb.id, RelationshipKind.CREATED)
    services.user_quests.add_to_watchlist("alice", qb.id)
    services.user_quests.add_to_watchlist("bob", qa.id)
    services.user_quests.record_result("bob", qa.id, failed=False)
    return services


def fail_nth_counter_write(services, monkeypatch, n):
    original = services.users.set_counter
    calls = {"n": 0}

    def flaky(user_id, kind, value):
        calls["n"] += 1
        if calls["n"] == n:
            raise TransientStoreError("timeout")
        return original(user_id, kind, value)

    monkeypatch.setattr(services.users, "set_counter", flaky)


def assert_counters_match_rows(services, user_id):
    user = services.users.get(user_id)
    for kind, field in COUNTER_FIELDS.items():
        assert getattr(user, field) == services.relationships.count(user_id, kind), field


def test_create_profile_defaults(services):
    user = services.accounts.create_profile(AuthIdentity("carol", "carol@example.com"))

    assert user.email == "carol@example.com"
    assert user.is_premium is False
    assert user.date_created is not None
    assert user.num_quests_completed == user.num_quests_failed == 0
    with pytest.raises(AlreadyExists):
        services.accounts.create_profile(AuthIdentity("carol"))


def test_delete_quest_cascades_to_every_user(world):
    completed = world.user_quests.delete_quest("alice", "q-a")

    assert completed == ["counters", "relationships", "quest"]
    assert not world.quests.exists("q-a")
    assert world.user_quests.list_quest_ids("bob", WATCH) == []
    assert world.user_quests.list_quest_ids("bob", RelationshipKind.COMPLETED) == []
    assert world.user_quests.list_quest_ids("alice", RelationshipKind.CREATED) == []
    bob = world.users.get("bob")
    assert bob.num_watchlist_quests == 0
    assert bob.num_quests_completed == 0


def test_only_owner_can_delete_or_hide(world):
    with pytest.raises(Forbidden):
        world.user_quests.delete_quest("bob", "q-a")
    with pytest.raises(Forbidden):
        world.user_quests.set_hidden("bob", "q-a", True)
    assert world.quests.exists("q-a")


def test_delete_quest_is_resumable(world, monkeypatch):
    original = world.quests.delete
    calls = {"n": 0}

    def flaky(quest_id):
        calls["n"] += 1
        if calls["n"] == 1:
            raise TransientStoreError("timeout")
        return original(quest_id)

    monkeypatch.setattr(world.quests, "delete", flaky)

    with pytest.raises(PartialCascadeFailure) as info:
        world.user_quests.delete_quest("alice", "q-a")
    assert info.value.step == "quest"
    assert info.value.completed == ["counters", "relationships"]
    assert world.user_quests.list_quest_ids("bob", WATCH) == []

    world.user_quests.delete_quest("alice", "q-a")
    assert not world.quests.exists("q-a")


@pytest.mark.parametrize("failing_write", range(1, 7))
def test_delete_quest_rerun_repairs_counters_after_failed_counter_write(world, monkeypatch, failing_write):
    # q-a sits in three lists: alice created, bob watchlist, bob completed
    fail_nth_counter_write(world, monkeypatch, failing_write)

    with pytest.raises(PartialCascadeFailure):
        world.user_quests.delete_quest("alice", "q-a")
    world.user_quests.delete_quest("alice", "q-a")

    assert not world.quests.exists("q-a")
    assert_counters_match_rows(world, "alice")
    assert_counters_match_rows(world, "bob")
    assert world.users.get("bob").num_watchlist_quests == 0


@pytest.mark.parametrize("failing_write", range(1, 5))
def test_delete_account_rerun_repairs_other_users_counters(world, monkeypatch, failing_write):
    fail_nth_counter_write(world, monkeypatch, failing_write)

    with pytest.raises(PartialCascadeFailure) as info:
        world.accounts.delete_account("alice")
    assert info.value.step == "relationships"
    world.accounts.delete_account("alice")

    assert not world.users.exists("alice")
    assert_counters_match_rows(world, "bob")
    assert world.users.get("bob").num_quests_completed == 0


def test_delete_account_removes_everything_it_owns(world):
    completed = world.accounts.delete_account("alice")

    assert completed == ["auth", "relationships", "quests", "user"]
    assert not world.users.exists("alice")
    assert not world.quests.exists("q-a")
    assert world.quests.exists("q-b")
    for kind in RelationshipKind:
        assert world.relationships.list_quest_ids("alice", kind) == []
    assert world.user_quests.list_quest_ids("bob", WATCH) == []
    bob = world.users.get("bob")
    assert bob.num_watchlist_quests == 0
    assert bob.num_quests_completed == 0
    assert bob.num_quests_created == 1
    with pytest.raises(Unauthenticated):
        world.auth.authenticate("alice")


def test_delete_account_failure_names_step_and_rerun_finishes(world, monkeypatch):
    original = world.users.delete

    def broken(user_id):
        raise TransientStoreError("backend unavailable")

    monkeypatch.setattr(world.users, "delete", broken)
    with pytest.raises(PartialCascadeFailure) as info:
        world.accounts.delete_account("alice")

    assert info.value.step == "user"
    assert info.value.completed == ["auth", "relationships", "quests"]
    assert not world.quests.exists("q-a")
    assert world.users.exists("alice")

    monkeypatch.setattr(world.users, "delete", original)
    assert world.accounts.delete_account("alice") == ["auth", "relationships", "quests", "user"]
    assert not world.users.exists("alice")


def test_delete_account_twice_is_harmless(world):
    world.accounts.delete_account("alice")
    assert world.accounts.delete_account("alice") == ["auth", "relationships", "quests", "user"]


def test_trusted_header_auth_requires_an_id(services):
    with pytest.raises(Unauthenticated):
        services.auth.authenticate(None)
    with pytest.raises(Unauthenticated):
        services.auth.authenticate("   ")
    assert services.auth.authenticate(" dave ", "d@example.com") == AuthIdentity("dave", "d@example.com")


def test_deleted_identity_can_only_retry_an_unfinished_deletion(world, monkeypatch):
    original = world.relationships.delete_all_for_user

    def broken(user_id):
        raise TransientStoreError("backend unavailable")

    monkeypatch.setattr(world.relationships, "delete_all_for_user", broken)
    with pytest.raises(PartialCascadeFailure):
        world.accounts.delete_account("alice")

    with pytest.raises(Unauthenticated):
        world.auth.authenticate("alice")
    assert world.auth.authenticate("alice", allow_pending_deletion=True).user_id == "alice"

    monkeypatch.setattr(world.relationships, "delete_all_for_user", original)
    world.accounts.delete_account("alice")
    with pytest.raises(Unauthenticated):
        world.auth.authenticate("alice", allow_pending_deletion=True)
