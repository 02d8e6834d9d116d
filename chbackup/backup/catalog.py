"""
Backup catalog built from raw remote listings.

Object stores cannot list "backups", only keys, so the catalog is derived on
every call. Two layouts count as a backup:
- {path}/{name}.{tar extension}: single archive file
- {path}/{name}/metadata/... and {path}/{name}/shadow/...: directory layout

A directory layout missing either subtree is an interrupted upload and is
left out.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from chbackup.storage import RemoteStorage, RemoteFile
from .compression import strip_archive_extension


@dataclass
class Backup:
    """A logical backup as seen on remote storage."""
    name: str
    size: int
    date: datetime
    archive: bool = False

    @property
    def layout(self) -> str:
        return 'tar' if self.archive else 'directory'


@dataclass
class _CatalogEntry:
    has_metadata: bool = False
    has_shadow: bool = False
    is_archive: bool = False
    archive_size: int = 0
    archive_date: Optional[datetime] = None
    tree_size: int = 0
    tree_date: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        return (self.has_metadata and self.has_shadow) or self.is_archive

    def to_backup(self, name: str) -> Backup:
        if self.is_archive:
            return Backup(name=name, size=self.archive_size, date=self.archive_date, archive=True)
        return Backup(name=name, size=self.tree_size, date=self.tree_date, archive=False)


def list_prefix(path: str) -> str:
    """Prefix under which every backup of a configured path lives."""
    path = (path or '').strip('/')
    return f'{path}/' if path else ''


def build_backup_list(storage: RemoteStorage, path: str) -> List[Backup]:
    """
    Walk path once and reconcile the keys into backups.

    Args:
        storage: Connected remote storage
        path: Configured path prefix ('' for the storage root)

    Returns:
        Valid backups sorted by date, oldest first; ties keep listing order

    Raises:
        TransportError: If the listing fails (no partial catalog is returned)
    """
    prefix = list_prefix(path)
    entries: Dict[str, _CatalogEntry] = {}

    def visit(remote_file: RemoteFile):
        if not remote_file.name.startswith(prefix):
            return
        key = remote_file.name[len(prefix):].lstrip('/')
        name, _, remainder = key.partition('/')
        if not name:
            return

        if not remainder:
            backup_name = strip_archive_extension(name)
            if backup_name is None:
                return
            entry = entries.setdefault(backup_name, _CatalogEntry())
            entry.is_archive = True
            entry.archive_size = remote_file.size
            entry.archive_date = remote_file.last_modified
            return

        entry = entries.setdefault(name, _CatalogEntry())
        segment = remainder.split('/', 1)[0]
        if segment == 'metadata':
            entry.has_metadata = True
        elif segment == 'shadow':
            entry.has_shadow = True
        entry.tree_size += remote_file.size
        if entry.tree_date is None or remote_file.last_modified > entry.tree_date:
            entry.tree_date = remote_file.last_modified

    storage.walk(prefix, visit)

    backups = [entry.to_backup(name) for name, entry in entries.items() if entry.is_valid]
    # sorted() is stable
    return sorted(backups, key=lambda b: b.date)


def format_bytes(size: int) -> str:
    """Human readable byte count using binary units."""
    units = ['B', 'KiB', 'MiB', 'GiB', 'TiB', 'PiB']
    value = float(size)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            if unit == 'B':
                return f'{int(value)}B'
            return f'{value:.2f}{unit}'
        value /= 1024


def format_backup_list(backups: List[Backup], fmt: str = 'all') -> str:
    """
    Render a catalog for display.

    Args:
        backups: Catalog, oldest first
        fmt: 'all' for a table, 'latest'/'last'/'l' or
            'penult'/'prev'/'previous'/'p' for a single name

    Returns:
        Rendered text (no trailing newline)

    Raises:
        ValueError: If fmt is unknown or the catalog is too short for it
    """
    if fmt in ('latest', 'last', 'l'):
        if len(backups) < 1:
            raise ValueError("No backups found")
        return backups[-1].name
    if fmt in ('penult', 'prev', 'previous', 'p'):
        if len(backups) < 2:
            raise ValueError("No penult backup is found")
        return backups[-2].name
    if fmt not in ('all', ''):
        raise ValueError(f"'{fmt}' undefined")

    rows = [
        (b.name, format_bytes(b.size), b.date.strftime('%d/%m/%Y %H:%M:%S'), 'remote', b.layout)
        for b in backups
    ]
    if not rows:
        return ''
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    return '\n'.join(
        '   '.join(col.ljust(widths[i]) for i, col in enumerate(row)).rstrip()
        for row in rows
    )
