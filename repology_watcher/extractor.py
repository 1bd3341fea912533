"""
Field extraction from raw Repology package records.

Turns the API response into a snapshot: a mapping from package
identity to the monitored field values.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

logger = logging.getLogger(__name__)

# Placeholder for a field the API did not report
NOT_AVAILABLE = "N/A"

# Identity given to records without a usable repository name
UNKNOWN_IDENTITY = "unknown"

Snapshot = dict[str, dict[str, str]]


def _text(value: Any) -> str | None:
    """Return a stripped non-empty string, or None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def package_identity(record: Mapping[str, Any], fallback: str | None = None) -> str:
    """
    Compute the identity of a package record.

    The identity is ``repo/subrepo`` when a subrepository is present and
    differs from the repository, ``repo`` otherwise.

    Parameters
    ----------
    record : Mapping[str, Any]
        Raw package record.
    fallback : str | None
        Primary key to use when the record has no ``repo`` value.

    Returns
    -------
    str
        Package identity, ``UNKNOWN_IDENTITY`` if no repository is known.
    """
    primary = _text(record.get("repo")) or _text(fallback)
    if primary is None:
        return UNKNOWN_IDENTITY

    secondary = _text(record.get("subrepo"))
    if secondary and secondary != primary:
        return f"{primary}/{secondary}"
    return primary


def _iter_records(data: Any) -> Iterator[tuple[Any, str | None]]:
    """Yield ``(record, fallback_repo)`` pairs for both response shapes."""
    if isinstance(data, Mapping):
        # Legacy shape: repository name -> list of packages
        for repo_name, packages in data.items():
            if not isinstance(packages, Sequence) or isinstance(packages, str):
                logger.debug("Skipping non-list entry for '%s'", repo_name)
                continue
            for package in packages:
                yield package, str(repo_name)
    elif isinstance(data, Iterable) and not isinstance(data, (str, bytes)):
        for package in data:
            yield package, None
    else:
        logger.warning("Unexpected API response type: %s", type(data).__name__)


def extract_monitored_fields(data: Any, fields: Sequence[str]) -> Snapshot:
    """
    Build a snapshot from raw API data.

    Records that are not mappings are skipped. When several records share an
    identity, the last one wins.

    Parameters
    ----------
    data : Any
        Parsed API response: a list of package records, or a mapping of
        repository name to a list of records.
    fields : Sequence[str]
        Monitored field names.

    Returns
    -------
    Snapshot
        Identity to ``{field: value}``; missing values are ``NOT_AVAILABLE``.
    """
    snapshot: Snapshot = {}
    skipped = 0

    for record, fallback in _iter_records(data):
        if not isinstance(record, Mapping):
            skipped += 1
            continue

        identity = package_identity(record, fallback)
        if identity in snapshot:
            logger.debug("Duplicate package identity '%s', keeping last", identity)

        snapshot[identity] = {
            field: NOT_AVAILABLE if record.get(field) is None else str(record[field])
            for field in fields
        }

    if skipped:
        logger.warning("Skipped %d malformed package record(s)", skipped)

    logger.info("Extracted %d package(s)", len(snapshot))
    return snapshot
