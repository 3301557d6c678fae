#!/usr/bin/env python3
"""
Upload the repository and index page to a web host with rsync.

Uploads:
  - ./repository/  -> <dest>/<repo-subdir>/
  - ./index.html   -> <dest>/index.html

One-way mirror, last writer wins.
"""

import argparse
import os
import sys
from pathlib import Path

from utils import (
    REPO_DIR, ROOT_DIR, BuildUtils, EnvironmentSetupError, PipelineError,
    config, need_cmd, resolve_path
)

REPO_SUBDIR = config.get('upload', 'repo_subdir', fallback='hermes')


class Publisher(BuildUtils):
    """
    rsync-based publisher.

    Args:
        repo_dir: Local reprepro base directory
        index_file: Generated index page
        rsync_dry_run: Pass --dry-run to rsync (rsync still runs)
        delete: Pass --delete to rsync
    """

    def __init__(self, repo_dir, index_file, rsync_dry_run=False, delete=False):
        super().__init__(dry_run=False)
        self.repo_dir = Path(repo_dir)
        self.index_file = Path(index_file)
        self.rsync_dry_run = rsync_dry_run
        self.delete = delete

    def rsync_options(self):
        opts = ["-avz"]
        if self.rsync_dry_run:
            opts.append("--dry-run")
        if self.delete:
            opts.append("--delete")
        return opts

    def commands(self, dest, repo_subdir=REPO_SUBDIR):
        dest = dest.rstrip('/')
        opts = self.rsync_options()
        return [
            ["rsync", *opts, f"{self.repo_dir}/", f"{dest}/{repo_subdir}/"],
            ["rsync", *opts, str(self.index_file), f"{dest}/index.html"],
        ]

    def publish(self, dest, repo_subdir=REPO_SUBDIR):
        need_cmd("rsync")
        if not self.repo_dir.is_dir():
            raise EnvironmentSetupError(f"repo dir not found: {self.repo_dir}")
        if not self.index_file.is_file():
            raise EnvironmentSetupError(f"index.html not found: {self.index_file}")
        for cmd in self.commands(dest, repo_subdir):
            self.run_command(cmd)
        print(f"Uploaded repo to: {dest.rstrip('/')}/{repo_subdir}/")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Upload the repository and index.html with rsync',
        usage='%(prog)s --dest user@host:/var/www/html [options]',
    )
    parser.add_argument('--dest',
                        help='Required. rsync destination root (e.g. user@host:/var/www/html)')
    parser.add_argument('--repo-subdir', default=REPO_SUBDIR,
                        help=f'Remote subdir for the repo (default: {REPO_SUBDIR})')
    parser.add_argument('--dry-run', action='store_true', help='Pass --dry-run to rsync')
    parser.add_argument('--delete', action='store_true', help='Pass --delete to rsync')
    args = parser.parse_args(argv)

    if not args.dest:
        print("ERROR: --dest is required", file=sys.stderr)
        parser.print_usage(sys.stderr)
        sys.exit(2)

    publisher = Publisher(
        resolve_path(os.environ.get('REPO_DIR') or REPO_DIR),
        resolve_path(os.environ.get('INDEX_FILE') or ROOT_DIR / 'index.html'),
        rsync_dry_run=args.dry_run,
        delete=args.delete,
    )
    try:
        publisher.publish(args.dest, args.repo_subdir)
    except PipelineError as e:
        print(e.format_report("upload_repo.py"), file=sys.stderr)
        sys.exit(e.exit_code)
    return 0


if __name__ == "__main__":
    main()
