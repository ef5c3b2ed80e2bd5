"""
CLI for crawling fanfiction.net category listings.

Usage:
    python cli.py pages [start] [end]        # Crawl listing pages and chapters
    python cli.py chapters --key KEY         # Fetch missing chapters of a run
    python cli.py update --key KEY           # Catch a run up with the latest updates
    python cli.py export --key KEY           # Export a run to aggregate files
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from pydantic import ValidationError

from config import DelayProfile, Settings
from ffcrawler.errors import ConfigurationError
from ffcrawler.export import export_output
from ffcrawler.request_queue import RequestQueue
from ffcrawler.scraper import FFNetScraper
from ffcrawler.storage import ContentStore

logger = logging.getLogger("ffcrawler.cli")

# Short names accepted by --debug
LOGGER_ALIASES = {
    'queue': 'request_queue',
}


def configure_logging(verbose: Optional[str], log_level: str = "INFO") -> None:
    """
    Configure logging from settings and the --verbose flag.

    ``-v`` enables debug output for the whole crawler, ``--debug queue,storage``
    only for the named modules.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if not verbose:
        return
    if verbose == '*':
        logging.getLogger('ffcrawler').setLevel(logging.DEBUG)
        return
    for name in verbose.split(','):
        name = name.strip()
        if name:
            logging.getLogger(f"ffcrawler.{LOGGER_ALIASES.get(name, name)}").setLevel(logging.DEBUG)


def build_queue(args, profile: DelayProfile) -> RequestQueue:
    """Create the request queue for a run, failing fast on bad delays."""
    settings = args.settings
    min_delay, max_delay = settings.delays(profile)
    if args.min_delay is not None:
        min_delay = args.min_delay
    if args.max_delay is not None:
        max_delay = args.max_delay

    dump_store = None
    if args.dump_html:
        dump_store = ContentStore(args.dump_dir or settings.dump_dir or os.path.join(args.out_dir, 'html'))

    return RequestQueue(
        min_delay=min_delay,
        max_delay=max_delay,
        max_attempts=settings.max_attempts,
        failure_ceiling=settings.failure_ceiling,
        dump_store=dump_store,
        headers={'User-Agent': settings.user_agent},
        timeout=settings.request_timeout,
    )


def build_scraper(args, queue: RequestQueue) -> FFNetScraper:
    settings = args.settings
    return FFNetScraper(
        queue,
        key=args.key,
        category=args.category,
        out_dir=args.out_dir,
        base_url=settings.base_url,
    )


def require_key(args) -> None:
    if not args.key:
        raise ConfigurationError(f"--key is required for the {args.command} command.")


async def cmd_pages(args):
    """Crawl a range of listing pages into a new or existing run."""
    queue = build_queue(args, DelayProfile.FULL)
    async with queue:
        scraper = build_scraper(args, queue)
        print(f"Run key: {scraper.key}")
        stories = await scraper.get_pages(args.start, args.end)
    print(f"✓ Crawled {len(stories)} stories into {scraper.store.root}")


async def cmd_chapters(args):
    """Fetch chapters missing from an existing run."""
    require_key(args)
    queue = build_queue(args, DelayProfile.LIGHT)
    async with queue:
        scraper = build_scraper(args, queue)
        count = await scraper.get_chapters_from_existing()
    print(f"✓ Checked chapters of {count} stories in {scraper.store.root}")


async def cmd_update(args):
    """Catch an existing run up with the latest listing updates."""
    require_key(args)
    queue = build_queue(args, DelayProfile.LIGHT)
    async with queue:
        scraper = build_scraper(args, queue)
        pages = await scraper.update_existing(args.last_page)
    print(f"✓ Scanned {pages} pages for {scraper.store.root}")


async def cmd_export(args):
    """Export an existing run."""
    require_key(args)
    path = await export_output(args.key, args.out_dir, args.export_dir)
    print(f"✓ Exported to {path}")


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Download fics from fanfiction.net that match the provided category."
    )

    common = argparse.ArgumentParser(add_help=False)
    common.set_defaults(settings=settings)
    common.add_argument(
        "-k", "--key",
        help="Key of existing load to continue"
    )
    common.add_argument(
        "--out-dir",
        default=settings.out_dir,
        type=os.path.normpath,
        help="Output directory"
    )
    common.add_argument(
        "--category",
        default=settings.category,
        help="Fanfiction category to scrape"
    )
    common.add_argument(
        "--dump-html",
        action="store_true",
        help="Save the body of all http requests made during the scrape"
    )
    common.add_argument(
        "--dump-dir",
        help="Directory for --dump-html files (default: <out-dir>/html)"
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_const",
        const="*",
        help="Enable debug output"
    )
    common.add_argument(
        "--debug",
        dest="verbose",
        metavar="NAMES",
        help="Enable debug output only for comma separated modules (e.g. queue,storage)"
    )
    common.add_argument(
        "--min-delay",
        type=float,
        help="Minimum delay between requests in seconds"
    )
    common.add_argument(
        "--max-delay",
        type=float,
        help="Maximum delay between requests in seconds"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Pages command
    pages_parser = subparsers.add_parser("pages", parents=[common], help="Crawl listing pages")
    pages_parser.add_argument("start", type=int, nargs="?", default=1, help="First page of results to scrape")
    pages_parser.add_argument("end", type=int, nargs="?", default=None, help="Last page of results to scrape")
    pages_parser.set_defaults(func=cmd_pages)

    # Chapters command
    chapters_parser = subparsers.add_parser("chapters", parents=[common], help="Fetch missing chapters")
    chapters_parser.set_defaults(func=cmd_chapters)

    # Update command
    update_parser = subparsers.add_parser("update", parents=[common], help="Catch up with latest updates")
    update_parser.add_argument(
        "--last-page",
        type=int,
        default=None,
        help="Last page to scan (default: resolved from the listing)"
    )
    update_parser.set_defaults(func=cmd_update)

    # Export command
    export_parser = subparsers.add_parser("export", parents=[common], help="Export a run")
    export_parser.add_argument(
        "--export-dir",
        default=settings.export_dir,
        type=os.path.normpath,
        help="Export directory"
    )
    export_parser.set_defaults(func=cmd_export)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    try:
        settings = Settings()
    except ValidationError as e:
        print(f"Error: invalid settings: {e}", file=sys.stderr)
        return 1

    parser = build_parser(settings)
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.verbose, settings.log_level)

    try:
        asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 1
    except Exception as e:
        logger.debug("Run failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
