"""Ingestion workers for votesync.

Each source adapter derives from ``BaseSyncWorker`` and implements
``fetch()``, ``normalize()`` and ``process()``; the base class owns the
ledger run, per-item error capture and guaranteed cleanup.

Sources:
- ``news``: political RSS feeds matched to candidates and parties
- ``candidates``: bulk candidate lists (JSON or CSV)

Deferred work lands in the retry queue and is processed by
``QueueDrainer``.
"""

from .base import BaseSyncWorker, ItemOutcome, TriggerRequest, TriggerResult
from .candidates import CandidateImportWorker, load_rows, parse_candidate_row, parse_csv
from .news import NewsFeedWorker, clean_html, parse_feed
from .registry import available_sources, build_worker, trigger
from .retry import DrainResult, QueueDrainer
from .sources import NEWS_FEEDS, POLITICAL_KEYWORDS, FeedSource, get_feeds, is_politically_relevant

__all__ = [
    "BaseSyncWorker",
    "CandidateImportWorker",
    "DrainResult",
    "FeedSource",
    "ItemOutcome",
    "NEWS_FEEDS",
    "NewsFeedWorker",
    "POLITICAL_KEYWORDS",
    "QueueDrainer",
    "TriggerRequest",
    "TriggerResult",
    "available_sources",
    "build_worker",
    "clean_html",
    "get_feeds",
    "is_politically_relevant",
    "load_rows",
    "parse_candidate_row",
    "parse_csv",
    "parse_feed",
    "trigger",
]
