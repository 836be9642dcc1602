import asyncio

import pytest

from database.schemas import Coordinate, Quest
from services.errors import FetchInProgress, TransientStoreError
from services.geo import GeohashRange
from services.proximity import Page, ProximityFeed, SubQueryCursor

ORIGIN = Coordinate(latitude=0, longitude=0)
CELL_A = GeohashRange("s0", "s1")
CELL_B = GeohashRange("s1", "s2")


def quest(quest_id, latitude=0.0, longitude=0.0):
    return Quest(id=quest_id, owner_id="owner", title=quest_id,
                 coordinate_start=Coordinate(latitude=latitude, longitude=longitude))


class FakeIndex:
    """Serves pre-baked pages per sub-query; the cursor is the next page index."""

    def __init__(self, pages, failures=None):
        self.pages = pages
        self.failures = failures or {}
        self.calls = []

    def __call__(self, sub_query, cursor, page_size):
        self.calls.append((sub_query, cursor))
        if self.failures.get(sub_query, 0) > 0:
            self.failures[sub_query] -= 1
            raise TransientStoreError("network down")
        index = cursor or 0
        batches = self.pages.get(sub_query, [])
        if index >= len(batches):
            return Page(items=[], next_cursor=None)
        items = batches[index]
        return Page(items=items, next_cursor=index + 1 if items else None)


def make_feed(index, page_size=2, cells=(CELL_A, CELL_B)):
    feed = ProximityFeed(index, page_size=page_size)
    feed.initialize(ORIGIN, 100_000)
    feed.cursors = [SubQueryCursor(sub_query=c) for c in cells]
    return feed


def ids(nearby):
    return [n.quest.id for n in nearby]


def test_shared_item_across_sub_queries_is_merged_once():
    index = FakeIndex({
        CELL_A: [[quest("q1"), quest("q2")]],
        CELL_B: [[quest("q2"), quest("q3")]],
    })
    feed = make_feed(index)

    result = asyncio.run(feed.fetch_more())

    assert sorted(ids(result.added)) == ["q1", "q2", "q3"]
    assert len(feed.results) == 3
    assert not result.exhausted


def test_results_never_contain_duplicates_across_rounds():
    index = FakeIndex({
        CELL_A: [[quest("q1"), quest("q2")], [quest("q3"), quest("q4")], [quest("q5")]],
        CELL_B: [[quest("q2"), quest("q4")], [quest("q1"), quest("q6")]],
    })
    feed = make_feed(index)

    for _ in range(5):
        asyncio.run(feed.fetch_more())

    all_ids = ids(feed.results)
    assert len(all_ids) == len(set(all_ids))
    assert set(all_ids) == {"q1", "q2", "q3", "q4", "q5", "q6"}
    assert feed.exhausted


def test_exhausted_sub_query_is_not_issued_again():
    index = FakeIndex({
        CELL_A: [[quest("a1")]],  # short page: exhausted immediately
        CELL_B: [[quest("b1"), quest("b2")], [quest("b3"), quest("b4")]],
    })
    feed = make_feed(index)

    asyncio.run(feed.fetch_more())
    index.calls.clear()
    asyncio.run(feed.fetch_more())

    assert [call[0] for call in index.calls] == [CELL_B]


def test_cursor_advances_with_each_full_page():
    index = FakeIndex({CELL_A: [[quest("a1"), quest("a2")], [quest("a3"), quest("a4")], []]})
    feed = make_feed(index, cells=(CELL_A,))

    asyncio.run(feed.fetch_more())
    assert feed.cursors[0].cursor == 1
    asyncio.run(feed.fetch_more())
    assert feed.cursors[0].cursor == 2
    assert [c[1] for c in index.calls] == [None, 1]


def test_fetch_after_global_exhaustion_is_a_no_op():
    index = FakeIndex({CELL_A: [[quest("a1")]], CELL_B: []})
    feed = make_feed(index)

    first = asyncio.run(feed.fetch_more())
    assert first.exhausted
    calls_before = len(index.calls)
    snapshot = ids(feed.results)

    again = asyncio.run(feed.fetch_more())

    assert again.added == []
    assert again.exhausted
    assert ids(feed.results) == snapshot
    assert len(index.calls) == calls_before


def test_failed_sub_query_is_isolated_and_retried_from_same_cursor():
    index = FakeIndex(
        {
            CELL_A: [[quest("a1"), quest("a2")]],
            CELL_B: [[quest("b1"), quest("b2")], [quest("b3")]],
        },
        failures={CELL_A: 1},
    )
    feed = make_feed(index)

    first = asyncio.run(feed.fetch_more())
    assert ids(first.added) == ["b1", "b2"]
    assert first.failed == [CELL_A]
    assert feed.cursors[0].cursor is None
    assert not feed.cursors[0].exhausted

    second = asyncio.run(feed.fetch_more())
    assert (CELL_A, None) in index.calls[2:]
    assert sorted(ids(second.added)) == ["a1", "a2", "b3"]
    assert second.failed == []


def test_new_items_are_annotated_with_distance():
    index = FakeIndex({CELL_A: [[quest("east", 0, 1)]]})
    feed = make_feed(index, cells=(CELL_A,))

    result = asyncio.run(feed.fetch_more())

    assert abs(result.added[0].distance_m - 111195) < 1


def test_concurrent_fetch_is_rejected():
    index = FakeIndex({CELL_A: [[quest("a1"), quest("a2")]], CELL_B: []})
    feed = make_feed(index)

    async def both():
        return await asyncio.gather(feed.fetch_more(), feed.fetch_more(), return_exceptions=True)

    first, second = asyncio.run(both())

    assert ids(first.added) == ["a1", "a2"]
    assert isinstance(second, FetchInProgress)


def test_initialize_during_fetch_is_rejected():
    index = FakeIndex({CELL_A: [[quest("a1")]], CELL_B: []})
    feed = make_feed(index)

    async def restart():
        feed.initialize(Coordinate(latitude=10, longitude=10), 5_000)

    async def both():
        return await asyncio.gather(feed.fetch_more(), restart(), return_exceptions=True)

    first, second = asyncio.run(both())

    assert isinstance(second, FetchInProgress)
    assert ids(first.added) == ["a1"]
    assert feed.center == ORIGIN
    assert ids(feed.results) == ["a1"]


def test_fetch_before_initialize_raises():
    feed = ProximityFeed(FakeIndex({}), page_size=2)
    with pytest.raises(RuntimeError):
        asyncio.run(feed.fetch_more())


def test_initialize_resets_state():
    index = FakeIndex({CELL_A: [[quest("a1")]]})
    feed = make_feed(index, cells=(CELL_A,))
    asyncio.run(feed.fetch_more())

    feed.initialize(ORIGIN, 10_000)

    assert feed.results == []
    assert feed.cursors and not feed.exhausted


def test_feed_over_stored_quests_finds_everything_in_range(services, make_quest):
    near = [(0.1, 0.1), (0.5, -0.3), (-0.4, 0.2), (0.2, 0.7), (-0.3, -0.6)]
    expected = {make_quest(latitude=lat, longitude=lon).id for lat, lon in near}
    make_quest(latitude=0.05, longitude=0.05, hidden=True)
    make_quest(latitude=40, longitude=40)

    feed = services.start_nearby("alice", ORIGIN, 100_000, page_size=2)
    for _ in range(20):
        if asyncio.run(feed.fetch_more()).exhausted:
            break

    found = ids(feed.results)
    assert feed.exhausted
    assert len(found) == len(set(found))
    assert set(found) == expected
