#!/usr/bin/env python3
"""Command line runner"""
import sys
import argparse
import logging

from chbackup import configure_logging
from chbackup.config import get_config
from chbackup.backup import (
    ArchiveError,
    RetentionManager,
    format_backup_list,
    new_backup_destination,
)
from chbackup.storage import StorageError

logger = logging.getLogger('chbackup')


def build_parser():
    parser = argparse.ArgumentParser(prog='chbackup', description='ClickHouse remote backup transport')
    parser.add_argument('--env', default=None, help='Configuration name (development, production, testing)')
    commands = parser.add_subparsers(dest='command', required=True)

    list_cmd = commands.add_parser('list', help='List remote backups')
    list_cmd.add_argument('format', nargs='?', default='all',
                          help='all, latest/last/l or penult/prev/previous/p')

    upload_cmd = commands.add_parser('upload', help='Upload a local backup directory')
    upload_cmd.add_argument('local_root')
    upload_cmd.add_argument('name')
    upload_cmd.add_argument('--diff-from', dest='diff_from', default=None,
                            help='Local directory of the backup to diff against')

    download_cmd = commands.add_parser('download', help='Download a backup and its required chain')
    download_cmd.add_argument('name')
    download_cmd.add_argument('local_root')

    delete_cmd = commands.add_parser('delete', help='Delete a remote backup')
    delete_cmd.add_argument('name')

    clean_cmd = commands.add_parser('clean', help='Delete all but the newest backups')
    clean_cmd.add_argument('--keep', type=int, default=None,
                           help='Backups to keep (default: BACKUPS_TO_KEEP_REMOTE)')

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    cfg = get_config(args.env)
    configure_logging(cfg)

    destination = None
    try:
        destination = new_backup_destination(cfg)
        destination.connect()

        if args.command == 'list':
            output = format_backup_list(destination.backup_list(), args.format)
            if output:
                print(output)
        elif args.command == 'upload':
            destination.compressed_stream_upload(args.local_root, args.name, args.diff_from)
        elif args.command == 'download':
            destination.compressed_stream_download(args.name, args.local_root)
        elif args.command == 'delete':
            destination.remove_backup(args.name)
        elif args.command == 'clean':
            RetentionManager(destination).enforce(args.keep)
    except (ArchiveError, StorageError, ValueError) as e:
        logger.error(str(e))
        return 1
    finally:
        if destination is not None:
            destination.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())
