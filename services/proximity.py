"""
Proximity feed: "load more quests near me".

The circle around the user is split into geohash sub-queries (see services.geo).
Every call to `fetch_more` pulls the next page from each live sub-query in
parallel, then merges the pages into one growing, de-duplicated result list.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from config import settings
from database.schemas import Coordinate, Quest
from services.errors import FetchInProgress
from services.geo import GeohashRange, distance_between, query_bounds

logger = logging.getLogger(__name__)


@dataclass
class Page:
    items: List[Quest]
    next_cursor: Any = None  # opaque resume point; None means "nothing after this"


# fetch_page(sub_query, cursor, page_size) -> Page. Blocking; run in a worker thread.
PageFetcher = Callable[[GeohashRange, Any, int], Page]


@dataclass
class NearbyQuest:
    quest: Quest
    distance_m: float


@dataclass
class SubQueryCursor:
    sub_query: GeohashRange
    cursor: Any = None
    exhausted: bool = False


@dataclass
class FetchResult:
    added: List[NearbyQuest] = field(default_factory=list)
    exhausted: bool = False
    failed: List[GeohashRange] = field(default_factory=list)


class ProximityFeed:
    """
    Merges N paginated geohash sub-queries into a single result list.

    Not re-entrant: a second `fetch_more` while one is running raises
    FetchInProgress. Exhausted sub-queries are never issued again; failed
    ones keep their cursor and are retried on the next call.
    """

    def __init__(self, fetch_page: PageFetcher, page_size: int = None):
        self._fetch_page = fetch_page
        self.page_size = page_size or settings.NEARBY_PAGE_SIZE
        self.center: Optional[Coordinate] = None
        self.radius_m: Optional[float] = None
        self.cursors: List[SubQueryCursor] = []
        self.results: List[NearbyQuest] = []
        self._seen_ids = set()
        self._fetching = False

    def initialize(self, center: Coordinate, radius_m: float, page_size: int = None):
        if self._fetching:
            raise FetchInProgress("cannot restart the feed while a fetch is running")
        if page_size is not None:
            self.page_size = page_size
        self.center = center
        self.radius_m = radius_m
        self.cursors = [SubQueryCursor(sub_query=q) for q in query_bounds(center, radius_m)]
        self.results = []
        self._seen_ids = set()
        logger.debug("Feed initialized with %d sub-queries around %s", len(self.cursors), center)

    @property
    def exhausted(self) -> bool:
        return all(c.exhausted for c in self.cursors)

    def active(self) -> List[SubQueryCursor]:
        return [c for c in self.cursors if not c.exhausted]

    async def fetch_more(self, page_size: int = None) -> FetchResult:
        if self.center is None:
            raise RuntimeError("feed has not been initialized")
        if self._fetching:
            raise FetchInProgress("a fetch is already running for this feed")

        size = page_size or self.page_size
        active = self.active()
        if not active:
            return FetchResult(exhausted=True)

        self._fetching = True
        try:
            # Fan out, then fan in before touching any shared state
            pages = await asyncio.gather(
                *(asyncio.to_thread(self._fetch_page, c.sub_query, c.cursor, size) for c in active),
                return_exceptions=True,
            )
            return self._merge(active, pages, size)
        finally:
            self._fetching = False

    def _merge(self, active: List[SubQueryCursor], pages: list, size: int) -> FetchResult:
        result = FetchResult()
        for entry, page in zip(active, pages):
            if isinstance(page, BaseException):
                if not isinstance(page, Exception):
                    raise page
                logger.warning("Sub-query %s failed; will retry", entry.sub_query, exc_info=page)
                result.failed.append(entry.sub_query)
                continue

            if len(page.items) < size or page.next_cursor is None:
                entry.exhausted = True
            else:
                entry.cursor = page.next_cursor

            for quest in page.items:
                if quest.id in self._seen_ids:
                    continue
                self._seen_ids.add(quest.id)
                nearby = NearbyQuest(quest=quest, distance_m=distance_between(self.center, quest.coordinate_start))
                self.results.append(nearby)
                result.added.append(nearby)

        result.exhausted = self.exhausted
        logger.debug("Merged %d new quests (exhausted=%s)", len(result.added), result.exhausted)
        return result
