"""Statistics tracking for reconciliation passes.

Provides a typed container for the counters a reload produces, replacing
ad hoc dicts in log lines and API responses.
"""

from dataclasses import asdict, dataclass


@dataclass
class ReconcileStats:
    """Statistics for one reconciliation of the library.

    Attributes:
        scanned: Regular files found under the library root.
        unchanged: Files kept from the previous index without probing.
        probed: Files handed to the probe tool.
        added: New tracks (path not in the previous index).
        refreshed: Known tracks re-probed because their file changed.
        removed: Tracks dropped because their file vanished or stopped probing.
        skipped: Files excluded as non-audio or unprobeable.
        invalidated: Cached transcode artifacts deleted.
        persisted: Whether the snapshot was written.

    Example:
        >>> stats = ReconcileStats()
        >>> stats.added += 1
        >>> stats.to_dict()["added"]
        1
    """

    scanned: int = 0
    unchanged: int = 0
    probed: int = 0
    added: int = 0
    refreshed: int = 0
    removed: int = 0
    skipped: int = 0
    invalidated: int = 0
    persisted: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    def __str__(self) -> str:
        return (
            f"ReconcileStats(scanned={self.scanned}, unchanged={self.unchanged}, "
            f"added={self.added}, refreshed={self.refreshed}, removed={self.removed}, "
            f"skipped={self.skipped}, invalidated={self.invalidated})"
        )
