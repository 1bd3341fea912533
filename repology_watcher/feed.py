"""
RSS 2.0 feed storage.

Loads an existing feed with feedparser, appends deduplicated
entries, limits its size and writes it back as RSS 2.0 XML.
"""

import logging
import os
import tempfile
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any

import feedparser

from repology_watcher.config import FeedConfig
from repology_watcher.entries import FeedEntry, format_rfc822
from repology_watcher.errors import FeedWriteError

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"

ET.register_namespace("atom", ATOM_NS)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class FeedDocument:
    """
    In-memory RSS document.

    Attributes
    ----------
    pub_date : str
        Channel publication date, set when the feed was created.
    last_build_date : str
        Channel build date, refreshed on every run.
    entries : list[FeedEntry]
        Items in document order.
    """

    pub_date: str
    last_build_date: str
    entries: list[FeedEntry] = field(default_factory=list)

    def has_entry(self, guid: str) -> bool:
        """Return True if an item with this GUID exists."""
        return any(entry.guid == guid for entry in self.entries)


def publication_time(entry: FeedEntry) -> datetime:
    """
    Parse the publication date of an entry.

    Unparseable dates sort as the oldest possible time.
    """
    try:
        moment = parsedate_to_datetime(entry.published)
    except (TypeError, ValueError, IndexError):
        return _OLDEST
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class FeedStore:
    """
    Reads, updates and writes the RSS feed document.

    Channel metadata always comes from the configuration; only the
    items and the original publication date are kept from an
    existing file.
    """

    def __init__(self, config: FeedConfig):
        """
        Initialize the feed store.

        Parameters
        ----------
        config : FeedConfig
            Channel metadata and retention settings.
        """
        self.config = config

    def new_document(self, now: datetime) -> FeedDocument:
        """Create an empty document stamped with ``now``."""
        stamp = format_rfc822(now)
        return FeedDocument(pub_date=stamp, last_build_date=stamp)

    def load_or_init(self, path: str | Path, now: datetime) -> FeedDocument:
        """
        Load the feed at ``path`` or start a new one.

        Parameters
        ----------
        path : str | Path
            Path to the RSS file.
        now : datetime
            Run timestamp, used for a new document.

        Returns
        -------
        FeedDocument
            The existing feed, or a fresh one if the file is missing,
            unreadable or not a feed.
        """
        path = Path(path)

        if not path.is_file():
            logger.info("Creating new RSS feed")
            return self.new_document(now)

        logger.info("Loading existing RSS feed from %s", path)

        try:
            content = path.read_bytes()
        except OSError as e:
            logger.warning("Could not read RSS file, creating new feed: %s", e)
            return self.new_document(now)

        parsed: Any = feedparser.parse(content)

        if not parsed.get("version"):
            logger.warning(
                "Could not parse existing RSS file, creating new feed: %s",
                parsed.get("bozo_exception") or "not a feed",
            )
            return self.new_document(now)

        if parsed.bozo:
            logger.warning("RSS file has parsing issues: %s", parsed.bozo_exception)

        entries: list[FeedEntry] = []
        guids: set[str] = set()
        for item in parsed.entries:
            entry = self._entry_from_feedparser(item)
            if entry.guid in guids:
                logger.warning("Dropping item with duplicate GUID: %s", entry.guid)
                continue
            guids.add(entry.guid)
            entries.append(entry)

        document = FeedDocument(
            pub_date=parsed.feed.get("published") or format_rfc822(now),
            last_build_date=parsed.feed.get("updated") or format_rfc822(now),
            entries=entries,
        )

        logger.info("Loaded existing feed with %d item(s)", len(document.entries))
        return document

    @staticmethod
    def _entry_from_feedparser(item: Any) -> FeedEntry:
        """Convert a feedparser entry into a FeedEntry."""
        tags = item.get("tags") or []
        category = tags[0].get("term", "") if tags else ""

        return FeedEntry(
            title=item.get("title", ""),
            link=item.get("link", ""),
            description=item.get("summary", ""),
            guid=item.get("id", "") or item.get("link", ""),
            published=item.get("published", ""),
            category=category or "",
        )

    def append(
        self, document: FeedDocument, entries: Iterable[FeedEntry], now: datetime
    ) -> int:
        """
        Append entries whose GUID is not yet in the document.

        The build date is refreshed even when nothing is added.

        Parameters
        ----------
        document : FeedDocument
            Document to update in place.
        entries : Iterable[FeedEntry]
            Candidate entries.
        now : datetime
            Run timestamp.

        Returns
        -------
        int
            Number of entries appended.
        """
        guids = {entry.guid for entry in document.entries}
        added = 0

        for entry in entries:
            if entry.guid in guids:
                logger.debug("Skipping duplicate item: %s", entry.guid)
                continue
            document.entries.append(entry)
            guids.add(entry.guid)
            added += 1
            logger.info("Added RSS item: %s", entry.title)

        document.last_build_date = format_rfc822(now)
        return added

    def trim(self, document: FeedDocument, max_items: int | None = None) -> int:
        """
        Keep only the most recent items.

        Items are ordered newest first by their parsed publication date.

        Parameters
        ----------
        document : FeedDocument
            Document to trim in place.
        max_items : int | None
            Limit, defaults to the configured ``max_items``.

        Returns
        -------
        int
            Number of items removed.
        """
        limit = self.config.max_items if max_items is None else max_items
        count = len(document.entries)

        if count <= limit:
            return 0

        logger.info(
            "Limiting feed to %d items (removing %d oldest)", limit, count - limit
        )
        ordered = sorted(document.entries, key=publication_time, reverse=True)
        document.entries = ordered[:limit]
        return count - limit

    def serialize(self, document: FeedDocument) -> bytes:
        """Render the document as RSS 2.0 XML."""
        config = self.config
        rss = ET.Element("rss", {"version": "2.0"})
        channel = ET.SubElement(rss, "channel")

        channel_fields = [
            ("title", config.title),
            ("link", config.link),
            ("description", config.description),
            ("language", config.language),
            ("copyright", config.copyright),
            ("managingEditor", config.managing_editor),
            ("webMaster", config.webmaster),
            ("category", config.category),
            ("generator", config.generator),
            ("ttl", str(config.ttl)),
            ("pubDate", document.pub_date),
            ("lastBuildDate", document.last_build_date),
        ]
        for tag, value in channel_fields:
            if value:
                ET.SubElement(channel, tag).text = value

        if config.self_link:
            ET.SubElement(
                channel,
                f"{{{ATOM_NS}}}link",
                {"href": config.self_link, "rel": "self", "type": "application/rss+xml"},
            )

        for entry in document.entries:
            item = ET.SubElement(channel, "item")
            ET.SubElement(item, "title").text = entry.title
            ET.SubElement(item, "link").text = entry.link
            ET.SubElement(item, "description").text = entry.description
            ET.SubElement(item, "pubDate").text = entry.published
            ET.SubElement(item, "guid", {"isPermaLink": "false"}).text = entry.guid
            if entry.category:
                ET.SubElement(item, "category").text = entry.category

        ET.indent(rss)
        return ET.tostring(rss, encoding="utf-8", xml_declaration=True) + b"\n"

    def persist(self, document: FeedDocument, path: str | Path) -> None:
        """
        Write the document to ``path``.

        The file is replaced atomically.

        Raises
        ------
        FeedWriteError
            If the file cannot be written.
        """
        path = Path(path)
        logger.info("Saving RSS feed to %s", path)

        tmp_name = None
        try:
            content = self.serialize(document)
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "wb", dir=path.parent, prefix=f".{path.name}.", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise FeedWriteError(f"Could not save RSS feed to {path}: {e}") from e
