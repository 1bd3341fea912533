"""
Unit tests for the feed module.

Tests cover feed loading and initialization, GUID deduplication,
size limiting and RSS serialization.
"""

import xml.etree.ElementTree as ET
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from repology_watcher.config import FeedConfig
from repology_watcher.entries import NO_CHANGES_GUID, EntryMapper, FeedEntry, format_rfc822
from repology_watcher.errors import FeedWriteError
from repology_watcher.feed import FeedDocument, FeedStore, publication_time


def make_entry(guid: str, published: str = "Mon, 22 Sep 2025 12:30:00 GMT") -> FeedEntry:
    """Create a feed entry with the given GUID."""
    return FeedEntry(
        title=f"Item {guid}",
        link="https://github.com/example/watcher/actions",
        description=f"<div><strong>Package:</strong> {guid}</div>",
        guid=guid,
        published=published,
        category="Security Tools/Update",
    )


class TestLoadOrInit:
    """Tests for loading or creating the feed document."""

    def test_missing_file_creates_document(
        self, feed_store: FeedStore, tmp_path: Path, now: datetime
    ) -> None:
        """Test that a missing file yields an empty document."""
        document = feed_store.load_or_init(tmp_path / "feed.xml", now)

        assert document.entries == []
        assert document.pub_date == format_rfc822(now)
        assert document.last_build_date == format_rfc822(now)

    def test_unparseable_file_creates_document(
        self,
        feed_store: FeedStore,
        tmp_path: Path,
        now: datetime,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a corrupt file is replaced by a fresh document."""
        path = tmp_path / "feed.xml"
        path.write_text("this is not a feed at all")

        document = feed_store.load_or_init(path, now)

        assert document.entries == []
        assert "creating new feed" in caplog.text.lower()

    def test_items_without_guid_deduplicated(
        self, feed_store: FeedStore, tmp_path: Path, now: datetime
    ) -> None:
        """Test that guid-less items sharing a link load as one entry."""
        path = tmp_path / "feed.xml"
        path.write_text(
            "<?xml version=\"1.0\" encoding=\"utf-8\"?>\n"
            "<rss version=\"2.0\"><channel><title>T</title>"
            "<link>https://x</link><description>D</description>"
            "<item><title>First</title><link>https://x/actions</link></item>"
            "<item><title>Second</title><link>https://x/actions</link></item>"
            "</channel></rss>\n"
        )

        document = feed_store.load_or_init(path, now)

        assert [entry.guid for entry in document.entries] == ["https://x/actions"]
        assert document.entries[0].title == "First"

    def test_round_trip(
        self, feed_store: FeedStore, tmp_path: Path, now: datetime
    ) -> None:
        """Test that a persisted document loads back with its items."""
        path = tmp_path / "feed.xml"
        document = feed_store.new_document(now - timedelta(days=7))
        feed_store.append(document, [make_entry("abc"), make_entry("def")], now)
        feed_store.persist(document, path)

        loaded = feed_store.load_or_init(path, now + timedelta(hours=1))

        assert [entry.guid for entry in loaded.entries] == ["abc", "def"]
        first = loaded.entries[0]
        assert first.title == "Item abc"
        assert first.link == "https://github.com/example/watcher/actions"
        assert first.published == "Mon, 22 Sep 2025 12:30:00 GMT"
        assert first.category == "Security Tools/Update"
        assert "abc" in first.description
        assert loaded.pub_date == format_rfc822(now - timedelta(days=7))


class TestAppend:
    """Tests for appending entries."""

    def test_appends_new_entries(self, feed_store: FeedStore, now: datetime) -> None:
        """Test that new entries are appended in order."""
        document = feed_store.new_document(now)

        added = feed_store.append(document, [make_entry("a"), make_entry("b")], now)

        assert added == 2
        assert [entry.guid for entry in document.entries] == ["a", "b"]

    def test_skips_duplicate_guid(self, feed_store: FeedStore, now: datetime) -> None:
        """Test that an entry with a known GUID is stored once."""
        document = feed_store.new_document(now)

        assert feed_store.append(document, [make_entry("a")], now) == 1
        assert feed_store.append(document, [make_entry("a")], now) == 0

        assert len(document.entries) == 1

    def test_skips_duplicate_within_batch(
        self, feed_store: FeedStore, now: datetime
    ) -> None:
        """Test that duplicates inside one batch are stored once."""
        document = feed_store.new_document(now)

        added = feed_store.append(document, [make_entry("a"), make_entry("a")], now)

        assert added == 1

    def test_refreshes_build_date(self, feed_store: FeedStore, now: datetime) -> None:
        """Test that the build date changes even when nothing is added."""
        document = feed_store.new_document(now)
        later = now + timedelta(hours=6)

        feed_store.append(document, [], later)

        assert document.last_build_date == format_rfc822(later)
        assert document.pub_date == format_rfc822(now)

    def test_maintenance_entry_not_duplicated(
        self, feed_store: FeedStore, mapper: EntryMapper, now: datetime
    ) -> None:
        """Test that repeated no-op runs keep a single maintenance entry."""
        document = feed_store.new_document(now)

        for hours in (0, 6):
            run_time = now + timedelta(hours=hours)
            feed_store.append(document, mapper.map_changes([], run_time), run_time)

        assert [entry.guid for entry in document.entries] == [NO_CHANGES_GUID]
        assert document.has_entry(NO_CHANGES_GUID)


class TestTrim:
    """Tests for limiting the feed size."""

    def test_keeps_most_recent(self, feed_store: FeedStore, now: datetime) -> None:
        """Test that only the newest max_items entries remain."""
        document = feed_store.new_document(now)
        entries = [
            make_entry(f"item-{i}", format_rfc822(now + timedelta(hours=i)))
            for i in range(60)
        ]
        feed_store.append(document, entries, now)

        removed = feed_store.trim(document, 50)

        assert removed == 10
        assert len(document.entries) == 50
        assert {entry.guid for entry in document.entries} == {
            f"item-{i}" for i in range(10, 60)
        }
        assert document.entries[0].guid == "item-59"

    def test_uses_configured_limit(self, now: datetime) -> None:
        """Test that the configured max_items is the default limit."""
        store = FeedStore(FeedConfig(max_items=3))
        document = store.new_document(now)
        store.append(
            document,
            [make_entry(str(i), format_rfc822(now + timedelta(days=i))) for i in range(5)],
            now,
        )

        assert store.trim(document) == 2
        assert [entry.guid for entry in document.entries] == ["4", "3", "2"]

    def test_under_limit_untouched(self, feed_store: FeedStore, now: datetime) -> None:
        """Test that a small feed keeps its order."""
        document = FeedDocument(
            pub_date="", last_build_date="", entries=[make_entry("a"), make_entry("b")]
        )

        assert feed_store.trim(document, 5) == 0
        assert [entry.guid for entry in document.entries] == ["a", "b"]

    def test_chronological_across_weekdays(
        self, feed_store: FeedStore, now: datetime
    ) -> None:
        """Test that ordering follows dates rather than weekday names."""
        older = make_entry("older", "Wed, 17 Sep 2025 10:00:00 GMT")
        newer = make_entry("newer", "Mon, 22 Sep 2025 10:00:00 GMT")
        document = FeedDocument(pub_date="", last_build_date="", entries=[older, newer])

        feed_store.trim(document, 1)

        assert [entry.guid for entry in document.entries] == ["newer"]

    def test_unparseable_dates_dropped_first(
        self, feed_store: FeedStore, now: datetime
    ) -> None:
        """Test that entries without a valid date count as oldest."""
        document = FeedDocument(
            pub_date="",
            last_build_date="",
            entries=[make_entry("bad", "not a date"), make_entry("good")],
        )

        feed_store.trim(document, 1)

        assert [entry.guid for entry in document.entries] == ["good"]

    def test_publication_time_invalid(self) -> None:
        """Test that invalid dates parse to the oldest time."""
        assert publication_time(make_entry("a", "")) < publication_time(make_entry("b"))


class TestSerialize:
    """Tests for RSS serialization."""

    def test_channel_metadata(self, feed_store: FeedStore, now: datetime) -> None:
        """Test the channel elements of the RSS document."""
        document = feed_store.new_document(now)

        root = ET.fromstring(feed_store.serialize(document))

        assert root.tag == "rss"
        assert root.get("version") == "2.0"
        channel = root.find("channel")
        assert channel.findtext("title") == "Hashcat Repository Monitor"
        assert channel.findtext("link") == "https://github.com/example/watcher"
        assert channel.findtext("language") == "en-us"
        assert channel.findtext("ttl") == "360"
        assert channel.findtext("category") == "Security Tools"
        assert channel.findtext("lastBuildDate") == format_rfc822(now)

    def test_item_elements(self, feed_store: FeedStore, now: datetime) -> None:
        """Test the item elements and escaped HTML description."""
        document = feed_store.new_document(now)
        feed_store.append(document, [make_entry("abc")], now)

        content = feed_store.serialize(document)
        item = ET.fromstring(content).find("channel/item")

        assert item.findtext("guid") == "abc"
        assert item.find("guid").get("isPermaLink") == "false"
        assert item.findtext("description") == "<div><strong>Package:</strong> abc</div>"
        assert b"&lt;div&gt;" in content

    def test_self_link(self, now: datetime) -> None:
        """Test that a configured self link adds an atom:link element."""
        store = FeedStore(FeedConfig(self_link="https://example.org/feed.xml"))

        content = store.serialize(store.new_document(now))

        assert b'xmlns:atom="http://www.w3.org/2005/Atom"' in content
        link = ET.fromstring(content).find(
            "channel/{http://www.w3.org/2005/Atom}link"
        )
        assert link.get("rel") == "self"
        assert link.get("href") == "https://example.org/feed.xml"


class TestPersist:
    """Tests for writing the feed."""

    def test_creates_file(
        self, feed_store: FeedStore, tmp_path: Path, now: datetime
    ) -> None:
        """Test that persist writes the file and parent directories."""
        path = tmp_path / "public" / "feed.xml"

        feed_store.persist(feed_store.new_document(now), path)

        assert path.exists()
        assert path.read_bytes().startswith(b"<?xml")
        assert list(path.parent.iterdir()) == [path]

    def test_failure_raises(
        self, feed_store: FeedStore, tmp_path: Path, now: datetime
    ) -> None:
        """Test that an unwritable target raises FeedWriteError."""
        path = tmp_path / "feed.xml"
        path.mkdir()

        with pytest.raises(FeedWriteError):
            feed_store.persist(feed_store.new_document(now), path)

        assert path.is_dir()
        assert list(tmp_path.iterdir()) == [path]
