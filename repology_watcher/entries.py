"""
Mapping of change records to RSS feed entries.

Builds titles, HTML descriptions, categories and deterministic
GUIDs for each detected change.
"""

import hashlib
import html
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime

from repology_watcher.changes import (
    ChangeRecord,
    FieldDelta,
    NewPackage,
    PackageChange,
    RemovedPackage,
)
from repology_watcher.config import FeedConfig

logger = logging.getLogger(__name__)

# GUID shared by every "no changes" maintenance entry
NO_CHANGES_GUID = "no-changes-item-static-guid"

VERSION_UNKNOWN = "version unknown"

CHANGE_LABELS = {
    NewPackage.kind: "New Package",
    PackageChange.kind: "Package Update",
    RemovedPackage.kind: "Package Removal",
}

CATEGORY_SUFFIXES = {
    NewPackage.kind: "New Release",
    PackageChange.kind: "Update",
    RemovedPackage.kind: "Deprecated",
}


@dataclass
class FeedEntry:
    """
    A single RSS item.

    Attributes
    ----------
    title : str
        Item title.
    link : str
        Item URL.
    description : str
        HTML fragment describing the change.
    guid : str
        Stable identifier, unique within a feed.
    published : str
        RFC-822 publication date.
    category : str
        Item category.
    """

    title: str
    link: str
    description: str
    guid: str
    published: str
    category: str = ""


def format_rfc822(moment: datetime) -> str:
    """Format a datetime as an RFC-822 date in GMT."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def _is_version_field(name: str) -> bool:
    return "version" in name.lower()


class EntryMapper:
    """
    Converts change records into feed entries.

    All entries built by one mapper share the run timestamp passed
    to its methods.
    """

    def __init__(self, config: FeedConfig, project_name: str, display_name: str):
        """
        Initialize the mapper.

        Parameters
        ----------
        config : FeedConfig
            Feed settings (link, category prefix, GUID policy).
        project_name : str
            Project name used in item titles.
        display_name : str
            Human-readable project name for the maintenance entry.
        """
        self.config = config
        self.project_name = project_name
        self.display_name = display_name

    @property
    def item_link(self) -> str:
        return self.config.link + self.config.item_link_suffix

    def build_title(self, change: ChangeRecord) -> str:
        """
        Build an item title.

        New and changed packages are titled
        ``Package (<project> <version>): <identity> change`` where the
        version is taken from the first version-like field.
        """
        if isinstance(change, RemovedPackage):
            return f"Package ({self.project_name}): {change.package} removed"

        version = VERSION_UNKNOWN
        for detail in change.details:
            if _is_version_field(detail.field):
                version = detail.value or version
                break

        return f"Package ({self.project_name} {version}): {change.package} change"

    def build_description(self, change: ChangeRecord) -> str:
        """Build the HTML description of a change."""
        label = CHANGE_LABELS.get(change.kind, change.kind)
        parts = [
            f"<div><strong>Package:</strong> {html.escape(change.package)}</div>",
            f"<div><strong>Change Type:</strong> {html.escape(label)}</div>",
        ]

        if change.details:
            parts.append("<div><strong>Details:</strong></div><ul>")
            for detail in change.details:
                name = html.escape(detail.field)
                if isinstance(detail, FieldDelta):
                    parts.append(
                        f"<li><strong>{name}:</strong> "
                        f"<code>{html.escape(detail.old)}</code> &rarr; "
                        f"<code>{html.escape(detail.new)}</code></li>"
                    )
                else:
                    parts.append(
                        f"<li><strong>{name}:</strong> "
                        f"<code>{html.escape(detail.value)}</code></li>"
                    )
            parts.append("</ul>")

        return "".join(parts)

    def build_category(self, change: ChangeRecord) -> str:
        """Classify a change; version changes take precedence."""
        prefix = self.config.category
        if any(_is_version_field(detail.field) for detail in change.details):
            return f"{prefix}/Version Update"

        suffix = CATEGORY_SUFFIXES.get(change.kind)
        return f"{prefix}/{suffix}" if suffix else prefix

    def build_guid(self, change: ChangeRecord, now: datetime) -> str:
        """
        Compute the GUID of a change.

        MD5 over the change kind, package identity and each field's
        resulting value. The run timestamp is mixed in when
        ``guid_includes_timestamp`` is enabled.
        """
        parts = [change.kind, change.package]
        parts.extend(f"{detail.field}:{detail.value}" for detail in change.details)
        if self.config.guid_includes_timestamp:
            parts.append(str(int(now.timestamp())))

        return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()

    def build_entry(self, change: ChangeRecord, now: datetime) -> FeedEntry:
        """
        Convert one change into a feed entry.

        Parameters
        ----------
        change : ChangeRecord
            The change to render.
        now : datetime
            Run timestamp.

        Returns
        -------
        FeedEntry
            The feed entry.
        """
        return FeedEntry(
            title=self.build_title(change),
            link=self.item_link,
            description=self.build_description(change),
            guid=self.build_guid(change, now),
            published=format_rfc822(now),
            category=self.build_category(change),
        )

    def no_changes_entry(self, now: datetime) -> FeedEntry:
        """Build the maintenance entry used when a run finds nothing."""
        stamp = format_rfc822(now)
        return FeedEntry(
            title=f"No new changes detected in {self.display_name} repository",
            link=self.item_link,
            description=f"The monitor ran at {stamp} and found no new changes.",
            guid=NO_CHANGES_GUID,
            published=stamp,
            category=f"{self.config.category}/Maintenance",
        )

    def map_changes(
        self, changes: Sequence[ChangeRecord], now: datetime
    ) -> list[FeedEntry]:
        """
        Convert a run's changes into feed entries.

        Parameters
        ----------
        changes : Sequence[ChangeRecord]
            Changes detected by the run.
        now : datetime
            Run timestamp.

        Returns
        -------
        list[FeedEntry]
            One entry per change, or the single maintenance entry if
            there are no changes.
        """
        if not changes:
            logger.debug("No changes, using maintenance entry")
            return [self.no_changes_entry(now)]

        entries = [self.build_entry(change, now) for change in changes]
        logger.debug("Mapped %d change(s) to feed entries", len(entries))
        return entries
