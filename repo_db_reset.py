#!/usr/bin/env python3
"""
Repair or reset the reprepro database.

Examples:
  # Erase the whole db (backup kept) and rereference
  repo_db_reset.py --erase-db --rereference

  # Remove just references.db (no backup)
  repo_db_reset.py --erase-references --no-backup
"""

import argparse
import datetime
import os
import shutil
import sys
from pathlib import Path

from reprepro import Reprepro
from utils import REPO_DIR, PipelineError, resolve_path, warn


def backup_name(path, timestamp):
    return path.with_name(f"{path.name}.deleted.{timestamp}")


def erase_db(repo_dir, timestamp, backup=True):
    """Move db/ aside (or delete it) and recreate it empty"""
    db = Path(repo_dir) / "db"
    if not db.exists():
        print(f"No db dir at {db} to erase")
        return None
    moved = None
    if backup:
        moved = backup_name(db, timestamp)
        print(f"Backing up {db} -> {moved}")
        db.rename(moved)
    else:
        print(f"Removing {db} (no backup)")
        shutil.rmtree(db)
    db.mkdir(parents=True)
    print(f"Erased DB directory at {db}")
    return moved


def erase_references(repo_dir, timestamp, backup=True):
    ref = Path(repo_dir) / "db" / "references.db"
    if not ref.exists():
        print(f"No references.db at {ref}")
        return None
    moved = None
    if backup:
        moved = backup_name(ref, timestamp)
        print(f"Backing up references.db -> {moved}")
        ref.rename(moved)
    else:
        print(f"Removing {ref} (no backup)")
        ref.unlink()
    print("references.db handled")
    return moved


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Reset or repair the reprepro database',
        epilog='Examples:' + __doc__.split('Examples:', 1)[1],
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--repo-dir', default=os.environ.get('REPO_DIR') or REPO_DIR,
                        help='Repo base dir (default: ./repository)')
    parser.add_argument('--erase-db', action='store_true',
                        help='Move repository/db to repository/db.deleted.TIMESTAMP (safe erase)')
    parser.add_argument('--erase-references', action='store_true',
                        help='Move repository/db/references.db to references.db.deleted.TIMESTAMP')
    parser.add_argument('--no-backup', action='store_true',
                        help='Do not keep backups when erasing (dangerous)')
    parser.add_argument('--rereference', action='store_true',
                        help="Run 'reprepro rereference' after changes")
    parser.add_argument('--clearvanished', action='store_true',
                        help="Run 'reprepro clearvanished' after changes")
    parser.add_argument('--detect', action='store_true',
                        help="Run '_detect' to rebuild files db from pool")

    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        parser.print_help()
        sys.exit(2)
    args = parser.parse_args(argv)

    repo_dir = resolve_path(args.repo_dir)
    if not repo_dir.is_dir():
        print(f"ERROR: repository dir not found: {repo_dir}", file=sys.stderr)
        sys.exit(1)

    timestamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    backup = not args.no_backup
    repo = Reprepro(repo_dir)

    try:
        if args.erase_db:
            erase_db(repo_dir, timestamp, backup)
        if args.erase_references:
            erase_references(repo_dir, timestamp, backup)
        for action, wanted in (("clearvanished", args.clearvanished), ("rereference", args.rereference)):
            if not wanted:
                continue
            result = repo.maintenance(action)
            if result.returncode != 0:
                warn(f"reprepro {action} exited with status {result.returncode}")
        if args.detect:
            print("Running _detect to rebuild file DB from pool (may take time)")
            repo.detect_pool_files()
    except PipelineError as e:
        print(e.format_report("repo_db_reset.py"), file=sys.stderr)
        sys.exit(e.exit_code)

    print("Done.")
    return 0


if __name__ == "__main__":
    main()
