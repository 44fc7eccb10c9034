"""News feed worker.

Fetches the political RSS feeds, keeps items that mention political
keywords, matches them to candidates or parties and stores one mention
per article URL. A feed that cannot be fetched is recorded in the run
metadata and skipped; the run only fails when every feed failed.

Mentions are insert-only, so the stored URL is the change check: an
article whose URL is already stored is skipped without consulting the
ChangeDetector, and an edited article is never re-matched.
"""

import re
from datetime import datetime, timezone

import feedparser
import httpx
from bs4 import BeautifulSoup
from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings, get_settings
from ..db import Database
from ..models import FeedItem, NewsItem
from ..reconcile import NewsCommitter
from ..resolution import NewsMatcher
from ..sync.errors import FetchError, ItemError
from ..sync.ledger import SyncRunLedger
from ..sync.queue import RetryQueue
from ..sync.ratelimit import RateLimiterRegistry
from .base import BaseSyncWorker, ItemOutcome, TriggerRequest
from .sources import FeedSource, get_feeds, is_politically_relevant

NEWS_SOURCE = "news"
NEWS_ENTITY = "news_mention"

_WHITESPACE = re.compile(r"\s+")


def clean_html(value: str) -> str:
    """Strip markup and collapse whitespace."""
    if not value:
        return ""
    text = BeautifulSoup(value, "html.parser").get_text(separator=" ", strip=True)
    return _WHITESPACE.sub(" ", text).strip()


def _entry_datetime(entry) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return datetime(*parsed[:6])
    return None


def parse_feed(feed_id: str, content: bytes | str) -> list[FeedItem]:
    """Parse RSS/Atom content into feed items.

    Raises:
        ItemError: The document is not a feed at all
    """
    parsed = feedparser.parse(content)
    if parsed.get("bozo") and not parsed.entries:
        raise ItemError(f"Malformed feed {feed_id}: {parsed.get('bozo_exception')}")

    items = []
    for entry in parsed.entries:
        body = ""
        if entry.get("content"):
            body = entry["content"][0].get("value", "")
        body = body or entry.get("summary", "") or entry.get("description", "")
        items.append(
            FeedItem(
                feed_id=feed_id,
                title=(entry.get("title") or "").strip(),
                link=(entry.get("link") or "").strip(),
                content=body,
                published_at=_entry_datetime(entry),
                author=entry.get("author"),
            )
        )
    return items


def parse_cursor(value: str | None) -> datetime | None:
    """Parse an ISO-8601 cursor into a naive UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class NewsFeedWorker(BaseSyncWorker[FeedItem, NewsItem]):
    """Sync worker for the news feeds."""

    source_name = NEWS_SOURCE

    def __init__(
        self,
        db: Database,
        ledger: SyncRunLedger | None = None,
        feeds: list[FeedSource] | None = None,
        http_client: httpx.AsyncClient | None = None,
        limiters: RateLimiterRegistry | None = None,
        matcher: NewsMatcher | None = None,
        committer: NewsCommitter | None = None,
        queue: RetryQueue | None = None,
        settings: Settings | None = None,
    ):
        super().__init__(db, ledger)
        self.settings = settings or get_settings()
        self.feeds = feeds
        self.limiters = limiters or RateLimiterRegistry(self.settings)
        self.matcher = matcher or NewsMatcher(db)
        self.committer = committer or NewsCommitter(db)
        self.queue = queue or RetryQueue(db)
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-initialized HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.http_timeout_seconds),
                follow_redirects=True,
                headers={
                    "User-Agent": self.settings.http_user_agent,
                    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml",
                },
            )
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch_feed(self, feed: FeedSource) -> list[FeedItem]:
        """Fetch one feed, trying backup URLs in order.

        Every request waits for the feed's rate limiter first.
        """
        last_error: Exception | None = None
        for url in feed.urls:
            await self.limiters.wait(feed.id)
            try:
                response = await self.http_client.get(url)
                response.raise_for_status()
                items = parse_feed(feed.id, response.content)
                self.logger.info(f"Found {len(items)} items from {feed.name}")
                return items
            except (httpx.HTTPError, ItemError) as e:
                last_error = e
                self.logger.warning(f"Error fetching {feed.name} from {url}: {e}")
        raise FetchError(feed.id, str(last_error) if last_error else "no URL configured")

    async def fetch(self, request: TriggerRequest) -> list[FeedItem]:
        feeds = self.feeds or get_feeds(ids=request.params.get("feeds"))
        since = parse_cursor(request.since_cursor)

        items: list[FeedItem] = []
        failures: dict[str, str] = {}
        for feed in feeds:
            try:
                items.extend(await self.fetch_feed(feed))
            except FetchError as e:
                failures[feed.id] = str(e)

        self.metadata["feeds"] = len(feeds)
        if failures:
            self.metadata["feed_errors"] = failures
        if feeds and len(failures) == len(feeds):
            raise FetchError(self.source_name, f"all {len(feeds)} feeds failed")

        if since is not None:
            items = [i for i in items if i.published_at is None or i.published_at >= since]
        return items

    async def prepare(self, request: TriggerRequest) -> None:
        await self.matcher.refresh()

    def is_relevant(self, item: FeedItem) -> bool:
        return is_politically_relevant(item.title, clean_html(item.content))

    def normalize(self, item: FeedItem) -> NewsItem:
        if not item.link or not item.title:
            raise ItemError(f"Feed item from {item.feed_id} has no title or link")
        return NewsItem(
            title=item.title,
            url=item.link,
            excerpt=clean_html(item.content)[: self.settings.news_excerpt_length],
            source=item.feed_id,
            published_at=item.published_at,
            author=item.author,
        )

    def describe(self, item: FeedItem) -> str:
        return item.title[:80] or item.link

    async def process(self, news: NewsItem) -> ItemOutcome:
        if await self.committer.exists(news.url):
            return ItemOutcome.SKIPPED

        matches = await self.matcher.match(news)
        if not matches:
            return ItemOutcome.SKIPPED

        try:
            mention_id = await self.committer.store(news, matches[0])
        except SQLAlchemyError as e:
            await self.queue.enqueue(
                self.source_name,
                NEWS_ENTITY,
                entity_id=news.url,
                metadata={"item": news.model_dump(mode="json")},
            )
            raise ItemError(f"Could not store {news.url}; queued for retry") from e

        if mention_id is None:
            return ItemOutcome.SKIPPED
        best = matches[0]
        self.logger.info(f"Saved: {news.title[:50]} -> {best.candidate_name or best.party_name}")
        return ItemOutcome.CREATED
