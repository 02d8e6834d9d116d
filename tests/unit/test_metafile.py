"""
Unit tests for chain metadata (chbackup/backup/metafile.py).
"""

import json

import pytest

from chbackup.backup.metafile import MetaFile


class TestMetaFile:

    def test_full_backup_is_not_incremental(self):
        assert not MetaFile().is_incremental

    def test_hardlinks_require_parent(self):
        with pytest.raises(ValueError):
            MetaFile(hardlinks=['shadow/a.bin'])

    def test_json_wire_format(self):
        metafile = MetaFile(required_backup='bk1', hardlinks=['shadow/a.bin', 'shadow/b.bin'])
        raw = metafile.to_json()

        assert json.loads(raw) == {
            'required_backup': 'bk1',
            'hardlinks': ['shadow/a.bin', 'shadow/b.bin'],
        }
        assert b'\n\t"required_backup"' in raw
        assert MetaFile.from_json(raw) == metafile

    def test_missing_hardlinks_key_is_empty(self):
        metafile = MetaFile.from_json(b'{"required_backup": "bk1"}')

        assert metafile.required_backup == 'bk1'
        assert metafile.hardlinks == []

    @pytest.mark.parametrize("raw", [
        b'[]',
        b'{"required_backup": 5}',
        b'{"required_backup": "bk1", "hardlinks": "shadow/a.bin"}',
        b'{"hardlinks": ["shadow/a.bin"]}',
    ])
    def test_invalid_documents_rejected(self, raw):
        with pytest.raises(ValueError):
            MetaFile.from_json(raw)
