"""altmirror — local deduplicated mirror of the Altered card marketplace.

Public API surface — import submodules directly for full access:
  altmirror.ingestion.facets    — facet combinations and their keys
  altmirror.ingestion.client    — catalog API client (pagination, 429 backoff)
  altmirror.sync.merge          — differential merge of a grouping
  altmirror.sync.crawler        — checkpointed crawl orchestration
  altmirror.storage.repository  — grouped JSONL card store
  altmirror.storage.checkpoint  — resumable crawl state
  altmirror.app.cli             — CLI entry point
"""

from .ingestion.facets import enumerate_combinations, build_filter_combination
from .sync.merge import merge_grouping
from .sync.crawler import CatalogCrawler, format_summary


def main():
    """CLI entry point."""
    from .app.main import main as _main
    return _main()


__all__ = [
    "enumerate_combinations",
    "build_filter_combination",
    "merge_grouping",
    "CatalogCrawler",
    "format_summary",
    "main",
]
