"""
Change detection between two package snapshots.

Defines the change records produced by a run and the diff that
computes them.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import ClassVar

from repology_watcher.extractor import NOT_AVAILABLE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldDelta:
    """A monitored field whose value changed."""

    field: str
    old: str
    new: str

    @property
    def value(self) -> str:
        """Resulting value of the field."""
        return self.new


@dataclass(frozen=True)
class FieldInfo:
    """An observed field value of a new package."""

    field: str
    value: str


FieldDetail = FieldDelta | FieldInfo


@dataclass(frozen=True)
class ChangeRecord:
    """
    Base class of all change records.

    Attributes
    ----------
    package : str
        Identity of the package the change applies to.
    """

    kind: ClassVar[str] = "change"

    package: str

    @property
    def details(self) -> tuple[FieldDetail, ...]:
        """Field entries carried by the change, in monitored-field order."""
        return ()


@dataclass(frozen=True)
class NewPackage(ChangeRecord):
    """A package that was not present in the previous snapshot."""

    kind: ClassVar[str] = "new_package"

    fields: tuple[FieldInfo, ...] = ()

    @property
    def details(self) -> tuple[FieldDetail, ...]:
        return self.fields


@dataclass(frozen=True)
class PackageChange(ChangeRecord):
    """A package with at least one monitored field changed."""

    kind: ClassVar[str] = "package_change"

    deltas: tuple[FieldDelta, ...] = ()

    @property
    def details(self) -> tuple[FieldDetail, ...]:
        return self.deltas


@dataclass(frozen=True)
class RemovedPackage(ChangeRecord):
    """A package that disappeared since the previous snapshot."""

    kind: ClassVar[str] = "removed_package"


def diff_snapshots(
    previous: Mapping[str, Mapping[str, str]] | None,
    current: Mapping[str, Mapping[str, str]],
    fields: Sequence[str],
) -> list[ChangeRecord]:
    """
    Compare two snapshots.

    New and changed packages come first, in sorted identity order of
    ``current``, followed by removed packages in sorted identity order
    of ``previous``. Values are compared as exact strings; a missing
    field counts as ``NOT_AVAILABLE``.

    Parameters
    ----------
    previous : Mapping | None
        Snapshot of the previous run, or None if there was none.
    current : Mapping
        Snapshot of this run.
    fields : Sequence[str]
        Monitored field names.

    Returns
    -------
    list[ChangeRecord]
        Detected changes; empty when both snapshots are equal.
    """
    previous = previous or {}
    changes: list[ChangeRecord] = []

    for package in sorted(current):
        current_fields = current[package]
        previous_fields = previous.get(package)

        if previous_fields is None:
            changes.append(
                NewPackage(
                    package=package,
                    fields=tuple(
                        FieldInfo(field, current_fields.get(field, NOT_AVAILABLE))
                        for field in fields
                    ),
                )
            )
            continue

        deltas = []
        for field in fields:
            old_value = previous_fields.get(field, NOT_AVAILABLE)
            new_value = current_fields.get(field, NOT_AVAILABLE)
            if old_value != new_value:
                deltas.append(FieldDelta(field, old_value, new_value))

        if deltas:
            changes.append(PackageChange(package=package, deltas=tuple(deltas)))

    for package in sorted(previous):
        if package not in current:
            changes.append(RemovedPackage(package=package))

    logger.debug("Diff produced %d change(s)", len(changes))
    return changes
