"""
JSON snapshot storage.

Persists the monitored fields of the previous run so that the next
run can detect changes.
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path

from repology_watcher.errors import StateError
from repology_watcher.extractor import Snapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    File-backed store for the previous package snapshot.

    The file holds a JSON object mapping package identity to
    ``{field: value}`` with string values.
    """

    def __init__(self, state_path: str | Path):
        """
        Initialize the store.

        Parameters
        ----------
        state_path : str | Path
            Path to the JSON snapshot file.
        """
        self.state_path = Path(state_path)

    def load(self) -> Snapshot | None:
        """
        Load the previous snapshot.

        Returns
        -------
        Snapshot | None
            The stored snapshot, or None if there is none or it cannot
            be read or parsed.
        """
        if not self.state_path.is_file():
            logger.info("No previous state found at %s", self.state_path)
            return None

        logger.info("Loading previous state from %s", self.state_path)

        try:
            raw = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read state file: %s", e)
            return None
        except json.JSONDecodeError as e:
            logger.warning("Could not parse state file JSON: %s", e)
            return None

        if not isinstance(raw, Mapping):
            logger.warning(
                "State file does not hold a JSON object (got %s)",
                type(raw).__name__,
            )
            return None

        snapshot: Snapshot = {}
        for identity, fields in raw.items():
            if not isinstance(fields, Mapping):
                logger.debug("Ignoring malformed state entry '%s'", identity)
                continue
            snapshot[identity] = {
                name: str(value) for name, value in fields.items() if value is not None
            }

        logger.debug("Loaded %d package(s) from state", len(snapshot))
        return snapshot

    def save(self, snapshot: Snapshot) -> None:
        """
        Save a snapshot, replacing the previous one.

        Parameters
        ----------
        snapshot : Snapshot
            Snapshot to persist.

        Raises
        ------
        StateError
            If the file cannot be written.
        """
        logger.info("Saving current state to %s", self.state_path)

        content = json.dumps(snapshot, indent=2, sort_keys=True, ensure_ascii=False)

        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            self.state_path.write_text(content + "\n", encoding="utf-8")
        except OSError as e:
            raise StateError(f"Could not save state file {self.state_path}: {e}") from e
