"""
Main entry point for Repology Watcher.

Runs the monitor stage (fetch, diff, report) and the feed stage
(report to RSS items) either separately or as a single run.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import coloredlogs

from repology_watcher.changes import ChangeRecord, diff_snapshots
from repology_watcher.config import AppConfig, load_config
from repology_watcher.entries import NO_CHANGES_GUID, EntryMapper
from repology_watcher.errors import FeedWriteError, FetchError, StateError
from repology_watcher.extractor import Snapshot, extract_monitored_fields
from repology_watcher.feed import FeedStore
from repology_watcher.fetcher import RepologyClient
from repology_watcher.report import format_changes, format_initial_state, read_report
from repology_watcher.state import SnapshotStore

logger = logging.getLogger(__name__)


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


@dataclass
class MonitorResult:
    """
    Outcome of the monitor stage.

    Attributes
    ----------
    snapshot : Snapshot
        Snapshot extracted from the API response.
    changes : list[ChangeRecord]
        Diff against the previous snapshot.
    initial : bool
        True when no previous snapshot existed.
    state_saved : bool
        True once the snapshot has been persisted.
    """

    snapshot: Snapshot
    changes: list[ChangeRecord] = field(default_factory=list)
    initial: bool = False
    state_saved: bool = False

    @property
    def feed_changes(self) -> list[ChangeRecord]:
        """Changes to publish; a first run only observes."""
        return [] if self.initial else self.changes


@dataclass
class FeedUpdateResult:
    """
    Outcome of the feed stage.

    Attributes
    ----------
    changes : int
        Number of changes received.
    added : int
        Items appended to the feed.
    skipped : int
        Items already present by GUID.
    trimmed : int
        Items removed to respect the size limit.
    total : int
        Items in the written feed.
    maintenance_added : bool
        True if a "no changes" item was added.
    """

    changes: int = 0
    added: int = 0
    skipped: int = 0
    trimmed: int = 0
    total: int = 0
    maintenance_added: bool = False


class RepologyWatcher:
    """
    Repology watcher application.

    Coordinates extraction, change detection, snapshot storage and
    feed maintenance.
    """

    def __init__(self, config: AppConfig):
        """
        Initialize the watcher.

        Parameters
        ----------
        config : AppConfig
            Application configuration.
        """
        self.config = config
        self.fields = list(config.state.monitored_fields)
        self.state_store = SnapshotStore(config.state.state_path)
        self.feed_store = FeedStore(config.feed)
        self.mapper = EntryMapper(
            config.feed,
            project_name=config.project.name,
            display_name=config.project.display_name or config.project.name,
        )

    async def fetch(self) -> Any:
        """
        Fetch the raw package list from the API.

        Raises
        ------
        FetchError
            If the API cannot be reached or decoded.
        """
        proxy_url = self.config.fetch.proxy
        if proxy_url:
            logger.info("Using proxy: %s", redact_proxy_url(proxy_url))

        async with RepologyClient(
            self.config.project.api_url,
            timeout=self.config.fetch.request_timeout,
            user_agent=self.config.fetch.user_agent,
            proxy_url=proxy_url,
        ) as client:
            return await client.fetch_packages()

    def detect_changes(self, data: Any) -> MonitorResult:
        """
        Extract the current snapshot and diff it against the stored one.

        Parameters
        ----------
        data : Any
            Parsed API response.

        Returns
        -------
        MonitorResult
            Snapshot and changes; the snapshot is not saved yet.
        """
        logger.info("Monitoring fields: %s", ", ".join(self.fields))

        snapshot = extract_monitored_fields(data, self.fields)
        previous = self.state_store.load()

        if previous is None:
            logger.info("No previous state found, initializing monitoring")
            return MonitorResult(
                snapshot=snapshot,
                changes=diff_snapshots(None, snapshot, self.fields),
                initial=True,
            )

        changes = diff_snapshots(previous, snapshot, self.fields)
        if changes:
            logger.info("Detected %d change(s)", len(changes))
        else:
            logger.info("No changes detected since last check")

        return MonitorResult(snapshot=snapshot, changes=changes)

    def save_state(self, result: MonitorResult) -> bool:
        """
        Persist the snapshot of a monitor result.

        A write failure is logged and reported through the return value.
        """
        try:
            self.state_store.save(result.snapshot)
        except StateError as e:
            logger.warning("%s", e)
            return False
        result.state_saved = True
        return True

    def render_report(self, result: MonitorResult) -> str:
        """Render a monitor result as a change report."""
        if result.initial:
            return format_initial_state(result.snapshot, self.fields)
        return format_changes(result.changes)

    def update_feed(
        self,
        changes: Sequence[ChangeRecord],
        rss_path: str | Path,
        now: datetime | None = None,
    ) -> FeedUpdateResult:
        """
        Publish changes to the RSS feed.

        Parameters
        ----------
        changes : Sequence[ChangeRecord]
            Changes to publish; an empty sequence yields the
            maintenance item.
        rss_path : str | Path
            Path of the RSS file to update.
        now : datetime | None
            Run timestamp, defaults to the current UTC time.

        Returns
        -------
        FeedUpdateResult
            Counts describing the update.

        Raises
        ------
        FeedWriteError
            If the feed cannot be written.
        """
        now = now or datetime.now(timezone.utc)

        document = self.feed_store.load_or_init(rss_path, now)

        if changes:
            logger.info("Adding %d change(s) to RSS feed", len(changes))
        else:
            logger.info("No changes to add to RSS feed")

        entries = self.mapper.map_changes(changes, now)
        added = self.feed_store.append(document, entries, now)
        trimmed = self.feed_store.trim(document)

        self.feed_store.persist(document, rss_path)

        result = FeedUpdateResult(
            changes=len(changes),
            added=added,
            skipped=len(entries) - added,
            trimmed=trimmed,
            total=len(document.entries),
            maintenance_added=not changes and added > 0,
        )

        if not changes and not result.maintenance_added:
            logger.info("Maintenance item '%s' already present", NO_CHANGES_GUID)

        logger.info(
            "RSS feed updated: %d added, %d duplicate(s), %d trimmed, %d total",
            result.added,
            result.skipped,
            result.trimmed,
            result.total,
        )
        return result


def setup_logging(verbose: bool = False) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    verbose : bool
        If True, set log level to DEBUG.
    """
    level = logging.DEBUG if verbose else logging.INFO

    coloredlogs.install(
        level=level,
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def _write_report(text: str, output: str | None) -> None:
    """Write a report to ``output`` or stdout."""
    if output is None or output == "-":
        sys.stdout.write(text)
        sys.stdout.flush()
        return

    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info("Change report written to %s", path)


def _fetch_or_none(watcher: RepologyWatcher) -> Any | None:
    try:
        return asyncio.run(watcher.fetch())
    except FetchError as e:
        logger.error("Failed to fetch API data: %s", e)
        return None


def cmd_monitor(watcher: RepologyWatcher, args: argparse.Namespace) -> int:
    """Fetch, diff and write the change report."""
    data = _fetch_or_none(watcher)
    if data is None:
        return 1

    result = watcher.detect_changes(data)

    try:
        _write_report(watcher.render_report(result), args.output)
    except OSError as e:
        logger.error("Could not write change report: %s", e)
        return 1

    watcher.save_state(result)
    logger.info("Monitoring complete")
    return 0


def cmd_feed(watcher: RepologyWatcher, args: argparse.Namespace) -> int:
    """Publish a change report to the RSS feed."""
    logger.info("Processing changes from %s", args.changes_file)
    logger.info("Output RSS file: %s", args.rss_file)

    changes = read_report(args.changes_file)

    try:
        watcher.update_feed(changes, args.rss_file)
    except FeedWriteError as e:
        logger.error("RSS generation failed: %s", e)
        return 1
    return 0


def cmd_run(watcher: RepologyWatcher, args: argparse.Namespace) -> int:
    """Run both stages without an intermediate report file."""
    changes: list[ChangeRecord] = []

    data = _fetch_or_none(watcher)
    if data is not None:
        result = watcher.detect_changes(data)
        watcher.save_state(result)
        changes = result.feed_changes
    else:
        logger.warning("Continuing without API data; state left untouched")

    try:
        watcher.update_feed(changes, args.rss_file)
    except FeedWriteError as e:
        logger.error("RSS generation failed: %s", e)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="repology-watcher",
        description="Monitor a Repology project and publish changes as RSS",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to configuration file (built-in defaults if omitted)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser(
        "monitor", help="Fetch the API, detect changes and write a change report"
    )
    monitor.add_argument(
        "-o",
        "--output",
        default=None,
        help="Write the change report to this file instead of stdout",
    )
    monitor.set_defaults(handler=cmd_monitor)

    feed = subparsers.add_parser("feed", help="Add a change report to the RSS feed")
    feed.add_argument("changes_file", help="Change report written by 'monitor'")
    feed.add_argument("rss_file", help="RSS file to create or update")
    feed.set_defaults(handler=cmd_feed)

    run = subparsers.add_parser("run", help="Monitor and update the feed in one go")
    run.add_argument("rss_file", help="RSS file to create or update")
    run.set_defaults(handler=cmd_run)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)

    if args.config is None:
        config = AppConfig()
    else:
        config_path = Path(args.config)
        if not config_path.exists():
            logger.error("Configuration file not found: %s", config_path)
            return 1
        config = load_config(config_path)

    watcher = RepologyWatcher(config)
    return args.handler(watcher, args)


if __name__ == "__main__":
    sys.exit(main())
