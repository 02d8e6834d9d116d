"""
Chain metadata stored inside incremental backup archives.

An incremental archive carries one extra entry, meta.json, naming the backup
it was diffed against and the files it shares with it as hardlinks. Those
files are not in the archive; restore links them from the parent backup.
"""

import json
from dataclasses import dataclass, field
from typing import List


# Reserved archive entry name; never extracted as a data file
META_FILE_NAME = 'meta.json'


@dataclass
class MetaFile:
    """Link from one backup to the backup it requires."""
    required_backup: str = ''
    hardlinks: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.hardlinks and not self.required_backup:
            raise ValueError("MetaFile with hardlinks must name the required backup")

    @property
    def is_incremental(self) -> bool:
        return bool(self.required_backup)

    def to_json(self) -> bytes:
        """Serialize to the meta.json wire format."""
        content = {
            'required_backup': self.required_backup,
            'hardlinks': list(self.hardlinks),
        }
        return json.dumps(content, indent='\t').encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'MetaFile':
        """
        Parse meta.json content.

        Args:
            data: Raw entry bytes

        Returns:
            MetaFile instance

        Raises:
            ValueError: If data is not a valid meta.json document
        """
        content = json.loads(data)
        if not isinstance(content, dict):
            raise ValueError(f"{META_FILE_NAME} must contain a JSON object")

        required_backup = content.get('required_backup') or ''
        hardlinks = content.get('hardlinks') or []
        if not isinstance(required_backup, str):
            raise ValueError("required_backup must be a string")
        if not isinstance(hardlinks, list) or not all(isinstance(h, str) for h in hardlinks):
            raise ValueError("hardlinks must be a list of strings")

        return cls(required_backup=required_backup, hardlinks=hardlinks)
