"""
Retention policy enforcement for remote backups.

Keeps the newest N backups of a destination and deletes the rest. Deletion
does not look at incremental chains: a backup still required by a newer
incremental backup is deleted like any other.
"""

import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from .catalog import Backup

logger = logging.getLogger(__name__)


def get_backups_to_delete(backups: List[Backup], keep: int) -> List[Backup]:
    """
    Select every backup except the newest `keep`, by date.

    Args:
        backups: Catalog entries in any order
        keep: Number of newest backups to retain; < 1 selects nothing

    Returns:
        Backups to delete, oldest first
    """
    if keep < 1 or len(backups) <= keep:
        return []
    ordered = sorted(backups, key=lambda b: b.date)
    return ordered[:-keep]


class RetentionManager:
    """
    Runs one pruning pass against a BackupDestination.

    The first failed deletion aborts the pass; keys deleted before it stay
    deleted.
    """

    def __init__(self, destination):
        """
        Initialize retention manager.

        Args:
            destination: BackupDestination to prune
        """
        self.destination = destination
        self.logs = []

    def enforce(self, keep: Optional[int] = None) -> Dict[str, Any]:
        """
        Enforce the retention policy.

        Args:
            keep: Backups to keep; defaults to the destination's configured count

        Returns:
            Dict with summary of cleanup operations:
            {
                'kept': List[str],
                'deleted': List[str],
                'logs': List[str]
            }

        Raises:
            StorageError: If listing or a deletion fails
        """
        if keep is None:
            keep = self.destination.backups_to_keep

        summary = {
            'kept': [],
            'deleted': [],
        }

        if keep < 1:
            self._log(f"Retention not configured (keep={keep}), skipping")
            summary['logs'] = self.logs
            return summary

        self._log(f"Enforcing retention on {self.destination.kind()}: keeping {keep} newest backups")

        backups = self.destination.backup_list()
        to_delete = get_backups_to_delete(backups, keep)
        doomed = {b.name for b in to_delete}
        summary['kept'] = [b.name for b in backups if b.name not in doomed]

        for backup in to_delete:
            try:
                deleted_keys = self.destination.remove_backup(backup.name)
            except Exception as e:
                self._log(f"Failed to delete backup {backup.name}: {e}")
                raise
            summary['deleted'].append(backup.name)
            self._log(f"Deleted backup {backup.name} ({deleted_keys} objects)")

        self._log(
            f"Retention enforcement complete. "
            f"Kept: {len(summary['kept'])}, "
            f"Deleted: {len(summary['deleted'])}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message)
