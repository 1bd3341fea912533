"""
Plain-text change report.

The monitor stage writes detected changes as a readable report; the
feed stage reads the same report back into change records.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from pathlib import Path

from repology_watcher.changes import (
    ChangeRecord,
    FieldDelta,
    FieldInfo,
    NewPackage,
    PackageChange,
    RemovedPackage,
)
from repology_watcher.extractor import NOT_AVAILABLE

logger = logging.getLogger(__name__)

CHANGES_DETECTED = "*** CHANGES DETECTED ***"
NO_CHANGES = "No changes detected since last check."

NEW_PACKAGE_RE = re.compile(r"^NEW PACKAGE:\s+(?P<package>.+)$")
PACKAGE_CHANGE_RE = re.compile(r"^CHANGES in\s+(?P<package>.+):$")
REMOVED_PACKAGE_RE = re.compile(r"^REMOVED PACKAGE:\s+(?P<package>.+)$")
DELTA_RE = re.compile(r"^(?P<field>[^:]+):\s+'(?P<old>.*)'\s+->\s+'(?P<new>.*)'$")
INFO_RE = re.compile(r"^(?P<field>[^:]+):\s*(?P<value>.*)$")


def format_changes(changes: Sequence[ChangeRecord]) -> str:
    """
    Render change records as a report.

    Parameters
    ----------
    changes : Sequence[ChangeRecord]
        Changes in emission order.

    Returns
    -------
    str
        Report text ending with a summary line.
    """
    lines: list[str] = []

    for change in changes:
        if isinstance(change, NewPackage):
            lines.append(f"NEW PACKAGE: {change.package}")
            lines.extend(f"  {info.field}: {info.value}" for info in change.fields)
        elif isinstance(change, PackageChange):
            lines.append(f"CHANGES in {change.package}:")
            lines.extend(
                f"  {delta.field}: '{delta.old}' -> '{delta.new}'"
                for delta in change.deltas
            )
        elif isinstance(change, RemovedPackage):
            lines.append(f"REMOVED PACKAGE: {change.package}")
        lines.append("")

    lines.append(CHANGES_DETECTED if changes else NO_CHANGES)
    return "\n".join(lines) + "\n"


def format_initial_state(
    snapshot: Mapping[str, Mapping[str, str]], fields: Sequence[str]
) -> str:
    """
    Render the observed state of a first run.

    The listing is informational only: ``parse_report`` yields no
    changes for it.
    """
    lines = ["No previous state found. Initializing monitoring...", "Current state:"]
    for package in sorted(snapshot):
        lines.append("")
        lines.append(f"Package: {package}")
        lines.extend(
            f"  {field}: {snapshot[package].get(field, NOT_AVAILABLE)}"
            for field in fields
        )
    return "\n".join(lines) + "\n"


def parse_report(text: str) -> list[ChangeRecord]:
    """
    Parse a report back into change records.

    Header lines start a new change; indented ``field: value`` and
    ``field: 'old' -> 'new'`` lines attach to the latest header.
    Anything else is ignored.

    Parameters
    ----------
    text : str
        Report content.

    Returns
    -------
    list[ChangeRecord]
        Changes in report order.
    """
    changes: list[ChangeRecord] = []
    kind: type[ChangeRecord] | None = None
    package = ""
    details: list[FieldDelta | FieldInfo] = []

    def flush() -> None:
        if kind is NewPackage:
            infos = tuple(d for d in details if isinstance(d, FieldInfo))
            changes.append(NewPackage(package=package, fields=infos))
        elif kind is PackageChange:
            deltas = tuple(d for d in details if isinstance(d, FieldDelta))
            changes.append(PackageChange(package=package, deltas=deltas))
        elif kind is RemovedPackage:
            changes.append(RemovedPackage(package=package))

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        for pattern, record_type in (
            (NEW_PACKAGE_RE, NewPackage),
            (PACKAGE_CHANGE_RE, PackageChange),
            (REMOVED_PACKAGE_RE, RemovedPackage),
        ):
            match = pattern.match(line)
            if match:
                flush()
                kind = record_type
                package = match.group("package").strip()
                details = []
                break
        else:
            # Detail lines are indented; top-level lines close the block
            if not raw_line[:1].isspace():
                flush()
                kind = None
                continue
            if kind is PackageChange:
                match = DELTA_RE.match(line)
                if match:
                    details.append(
                        FieldDelta(
                            match.group("field").strip(),
                            match.group("old"),
                            match.group("new"),
                        )
                    )
                    continue
            elif kind is NewPackage:
                match = INFO_RE.match(line)
                if match:
                    details.append(
                        FieldInfo(match.group("field").strip(), match.group("value"))
                    )
                    continue
            logger.debug("Ignoring report line: %s", line)

    flush()

    logger.info("Found %d change(s) to process", len(changes))
    return changes


def read_report(path: str | Path) -> list[ChangeRecord]:
    """
    Read and parse a report file.

    Parameters
    ----------
    path : str | Path
        Path to the report.

    Returns
    -------
    list[ChangeRecord]
        Parsed changes; empty if the file cannot be read.
    """
    path = Path(path)
    logger.info("Parsing changes file %s", path)

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read changes file '%s': %s", path, e)
        return []

    return parse_report(text)

