"""File snapshots for undoing file-tool writes.

``SnapshotManager`` records a file's state immediately before a write
(``create_file`` / ``apply_patch``) and can restore it later.  Each
snapshot is kept in memory and also written as one JSON document to the
snapshot directory so a later process can inspect it.

Rollback semantics:

* ``create`` snapshots: the file did not exist before the write, so
  rolling back deletes it.
* ``modify`` snapshots: the previous content is written back.

Typical usage::

    manager = SnapshotManager(Path(".codeplan/snapshots"))
    snapshot_id = manager.create_snapshot(path, "modify")
    path.write_text(new_content, encoding="utf-8")
    manager.update_snapshot_content(snapshot_id, new_content)
    ...
    manager.rollback(snapshot_id)
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """State of one file around a single write.

    Attributes:
        id: Unique snapshot id, ``snap_<hex>``.
        timestamp: Unix timestamp when the snapshot was taken.
        file_path: Absolute path of the file.
        operation: ``"create"`` or ``"modify"``.
        content: Content after the write (empty until updated).
        previous_content: Content before the write.  ``None`` for
            ``create`` snapshots.
    """

    id: str
    timestamp: float
    file_path: str
    operation: str
    content: str = ""
    previous_content: str | None = None


class SnapshotManager:
    """Takes, persists, and restores file snapshots.

    Args:
        snapshot_dir: Directory for persisted snapshot documents.
            Created on first use.
    """

    def __init__(self, snapshot_dir: Path) -> None:
        self._snapshot_dir = snapshot_dir
        self._snapshots: dict[str, Snapshot] = {}
        self._file_history: dict[str, list[str]] = {}

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def create_snapshot(self, file_path: Path, operation: str) -> str:
        """Record *file_path* before it is written.

        Args:
            file_path: Absolute path of the file about to change.
            operation: ``"create"`` or ``"modify"``.

        Returns:
            The new snapshot id.
        """
        previous: str | None = None
        if operation != "create" and file_path.is_file():
            previous = file_path.read_text(encoding="utf-8")

        snapshot = Snapshot(
            id=f"snap_{uuid.uuid4().hex[:12]}",
            timestamp=time.time(),
            file_path=str(file_path),
            operation=operation,
            previous_content=previous,
        )
        self._snapshots[snapshot.id] = snapshot
        self._file_history.setdefault(snapshot.file_path, []).append(snapshot.id)
        self._persist(snapshot)

        logger.debug("snapshot %s taken for %s (%s)", snapshot.id, file_path, operation)
        return snapshot.id

    def update_snapshot_content(self, snapshot_id: str, content: str) -> None:
        """Store the post-write *content* on an existing snapshot."""
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            return
        snapshot.content = content
        self._persist(snapshot)

    # ------------------------------------------------------------------
    # Restoring
    # ------------------------------------------------------------------

    def rollback(self, snapshot_id: str) -> dict[str, object]:
        """Undo the write recorded by *snapshot_id*.

        Returns:
            ``{"success": bool, "message": str}``.
        """
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            return {"success": False, "message": f"Snapshot not found: {snapshot_id}"}

        path = Path(snapshot.file_path)
        try:
            if snapshot.operation == "create":
                path.unlink(missing_ok=True)
            elif snapshot.previous_content is not None:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(snapshot.previous_content, encoding="utf-8")
        except OSError as exc:
            logger.error("rollback of %s failed: %s", snapshot_id, exc)
            return {"success": False, "message": f"Failed to rollback: {exc}"}

        logger.info("rolled back %s (%s)", snapshot.file_path, snapshot_id)
        return {"success": True, "message": f"Rolled back to snapshot {snapshot_id}"}

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        return self._snapshots.get(snapshot_id)

    def get_file_snapshots(self, file_path: Path) -> list[Snapshot]:
        """All snapshots of *file_path*, oldest first."""
        ids = self._file_history.get(str(file_path), [])
        return [self._snapshots[i] for i in ids if i in self._snapshots]

    def load_snapshots(self) -> int:
        """Load persisted snapshots from the snapshot directory.

        Unreadable documents are logged and skipped.

        Returns:
            Number of snapshots loaded.
        """
        if not self._snapshot_dir.is_dir():
            return 0

        loaded = 0
        for doc in sorted(self._snapshot_dir.glob("*.json")):
            try:
                with doc.open("r", encoding="utf-8") as fh:
                    snapshot = Snapshot(**json.load(fh))
            except (OSError, ValueError, TypeError) as exc:
                logger.warning("skipping unreadable snapshot %s: %s", doc.name, exc)
                continue
            if snapshot.id in self._snapshots:
                continue
            self._snapshots[snapshot.id] = snapshot
            self._file_history.setdefault(snapshot.file_path, []).append(snapshot.id)
            loaded += 1
        return loaded

    def _persist(self, snapshot: Snapshot) -> None:
        self._snapshot_dir.mkdir(parents=True, exist_ok=True)
        doc = self._snapshot_dir / f"{snapshot.id}.json"
        with doc.open("w", encoding="utf-8") as fh:
            json.dump(asdict(snapshot), fh, indent=2, ensure_ascii=False)
            fh.write("\n")

    def __len__(self) -> int:
        return len(self._snapshots)
