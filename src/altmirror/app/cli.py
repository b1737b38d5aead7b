"""Command line entry point.

Examples:
  altmirror crawl
  altmirror crawl --no-resume --limit 50
  altmirror targeted --set CORE --faction AX --main-cost 3 --name "Sierra"
  altmirror export --out exports/catalog.csv
  altmirror stats
  altmirror token
"""

from __future__ import annotations

import argparse
import re
from pathlib import Path
from typing import List, Optional

from ..config.auth import get_bearer_token, get_token_info, is_token_likely_expired
from ..config.settings import (
    API_BASE_URL,
    CARD_DB_DIR,
    CHECKPOINT_DIR,
    CHECKPOINT_PREFIX,
    DEFAULT_LOCALE,
    EXPORT_FILE,
    TARGETED_PREFIX,
    CrawlConfig,
)
from ..ingestion.client import CatalogClient
from ..ingestion.facets import build_filter_combination, count_combinations
from ..storage.checkpoint import CheckpointStore
from ..storage.repository import GroupedRepository
from ..sync.crawler import CatalogCrawler, format_summary
from ..utils.logging import get_logger, run_log

logger = get_logger(__name__)

EPILOG = """Examples:
  altmirror crawl
  altmirror crawl --no-resume --limit 50
  altmirror targeted --set CORE --faction AX --main-cost 3 --name "Sierra"
  altmirror export --out exports/catalog.csv
  altmirror token"""


def _int_list(text: str) -> List[int]:
    try:
        return [int(v) for v in text.split(",") if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma separated integers, got {text!r}")


def _str_list(text: str) -> List[str]:
    return [v.strip() for v in text.split(",") if v.strip()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="altmirror",
        description="Mirror the Altered card marketplace into a local grouped card store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Root for card_db/ and checkpoints_db/ (default: ALTMIRROR_DATA_DIR or repo root).")
    parser.add_argument("--locale", default=DEFAULT_LOCALE, help=f"API locale (default: {DEFAULT_LOCALE}).")
    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Crawl the whole facet space and update the card store.")
    crawl.add_argument("--no-resume", action="store_true", help="Ignore and clear any saved checkpoint.")
    crawl.add_argument("--include-ocean", action="store_true",
                       help="Also split queries on ocean power (much larger facet space).")
    crawl.add_argument("--limit", type=int, default=None,
                       help="Stop after this many combinations; rerun to resume.")
    crawl.add_argument("--checkpoint-every", type=int, default=None,
                       help="Save progress every N combinations (default: 10).")

    targeted = sub.add_parser("targeted", help="Crawl a single filter (several values per axis allowed).")
    targeted.add_argument("--set", dest="card_sets", type=_str_list, default=None, help="Card sets, e.g. CORE,ALIZE.")
    targeted.add_argument("--faction", dest="factions", type=_str_list, default=None, help="Factions, e.g. AX,BR.")
    targeted.add_argument("--main-cost", dest="main_costs", type=_int_list, default=None)
    targeted.add_argument("--recall-cost", dest="recall_costs", type=_int_list, default=None)
    targeted.add_argument("--forest", dest="forest_powers", type=_int_list, default=None)
    targeted.add_argument("--mountain", dest="mountain_powers", type=_int_list, default=None)
    targeted.add_argument("--ocean", dest="ocean_powers", type=_int_list, default=None)
    targeted.add_argument("--name", default=None, help="Card name filter.")
    targeted.add_argument("--no-resume", action="store_true", help="Ignore and clear any saved checkpoint.")

    export = sub.add_parser("export", help="Flatten the card store into a CSV file.")
    export.add_argument("--out", type=Path, default=None, help="Target CSV (default: exports/catalog.csv).")

    sub.add_parser("stats", help="Show card store totals per change type.")
    sub.add_parser("token", help="Show bearer token expiry information.")
    return parser


def _paths(data_dir: Optional[Path]):
    if data_dir is None:
        return CARD_DB_DIR, CHECKPOINT_DIR, EXPORT_FILE
    data_dir = Path(data_dir)
    return data_dir / "card_db", data_dir / "checkpoints_db", data_dir / "exports" / "catalog.csv"


def _checkpoint_prefix(combination_key: str) -> str:
    return f"{TARGETED_PREFIX}-{re.sub(r'[^A-Za-z0-9_.-]', '_', combination_key)}"


def _warn_token(token: Optional[str]) -> None:
    if not token:
        logger.warning("No bearer token configured; the API may refuse marketplace filters.")
    elif is_token_likely_expired(token):
        logger.warning("Bearer token looks expired; refresh it before crawling.")


def _make_crawler(args: argparse.Namespace, prefix: str, config: CrawlConfig) -> CatalogCrawler:
    card_db, checkpoint_dir, _ = _paths(args.data_dir)
    token = get_bearer_token()
    _warn_token(token)
    client = CatalogClient(base_url=API_BASE_URL, locale=args.locale, token=token)
    return CatalogCrawler(
        client=client,
        checkpoints=CheckpointStore(checkpoint_dir, prefix),
        repository=GroupedRepository(card_db),
        config=config,
    )


def _cmd_crawl(args: argparse.Namespace) -> int:
    config = CrawlConfig(include_ocean_power=args.include_ocean)
    if args.checkpoint_every:
        config.checkpoint_every = max(1, args.checkpoint_every)
    logger.info("Facet space: %d combinations", count_combinations(config.include_ocean_power))

    crawler = _make_crawler(args, CHECKPOINT_PREFIX, config)
    with run_log("crawl", args.data_dir):
        summary = crawler.run(resume=not args.no_resume, max_combinations=args.limit)
    print(format_summary(summary, config.max_summary_errors))
    return 0


def _cmd_targeted(args: argparse.Namespace) -> int:
    combination = build_filter_combination(
        card_sets=args.card_sets,
        factions=args.factions,
        main_costs=args.main_costs,
        recall_costs=args.recall_costs,
        forest_powers=args.forest_powers,
        mountain_powers=args.mountain_powers,
        ocean_powers=args.ocean_powers,
        name=args.name,
    )
    logger.info("Targeted filter: %s", combination.describe() or "(no filter)")

    config = CrawlConfig()
    crawler = _make_crawler(args, _checkpoint_prefix(combination.key), config)
    with run_log("targeted", args.data_dir):
        summary = crawler.run([combination], resume=not args.no_resume, detect_sold=False)
    print(format_summary(summary, config.max_summary_errors))
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    card_db, _, default_export = _paths(args.data_dir)
    target = args.out or default_export
    count = GroupedRepository(card_db).export_csv(target)
    print(f"Exported {count} cards to {target}")
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    card_db, _, _ = _paths(args.data_dir)
    repository = GroupedRepository(card_db)
    df = repository.load_frame()
    print(f"Groupings: {len(repository.list_groupings())}")
    print(f"Cards: {len(df)}")
    if not df.empty:
        counts = df["change_type"].fillna("unknown").value_counts()
        for change, count in counts.items():
            print(f"  {change}: {count}")
        priced = df["lower_price"].dropna()
        if not priced.empty:
            print(f"Lowest price range: {priced.min()} - {priced.max()}")
    return 0


def _cmd_token(args: argparse.Namespace) -> int:
    info = get_token_info(get_bearer_token())
    if "error" in info:
        print(f"Token: {info['error']}")
        return 1
    print(f"Subject: {info['subject']}")
    if info.get("preferred_username"):
        print(f"User: {info['preferred_username']}")
    print(f"Expires at: {info['expires_at']}")
    if info["is_expired"]:
        print("Token is EXPIRED")
        return 1
    print(f"Expires in: {info['expires_in_minutes']} minutes")
    return 0


COMMANDS = {
    "crawl": _cmd_crawl,
    "targeted": _cmd_targeted,
    "export": _cmd_export,
    "stats": _cmd_stats,
    "token": _cmd_token,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    return COMMANDS[args.command](args)
