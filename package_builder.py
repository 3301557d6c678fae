#!/usr/bin/env python3
"""
Debian package build invocation.

Computes the debuild/dpkg-buildpackage option set for a build tree, runs
the build with its output streamed to the console and to a per-package
log file, and leaves a build-start marker so the produced .changes files
can be told apart from leftovers of earlier runs.
"""

import datetime
import os
import subprocess
import sys
import tempfile
from pathlib import Path

from utils import (
    BuildUtils, BuildFailedError, DEBUILD_CMD_OPTS, MissingToolError, SEPARATOR_WIDTH, format_command
)

BINARY_ONLY_OPTS = {"-b", "-B", "-A", "--build=binary", "--build=any", "--build=all"}
SOURCE_ONLY_OPTS = {"-S", "--build=source"}
SOURCE_INCLUSION_OPTS = {"-sa", "-sd", "-si"}
STAMP_PREFIX = ".build-stamp."


def builds_source(opts):
    """False when dpkg-buildpackage is told to build binaries only"""
    return not any(o in BINARY_ONLY_OPTS for o in opts)


def is_source_only(opts):
    return any(o in SOURCE_ONLY_OPTS for o in opts)


def has_source_inclusion_mode(opts):
    return any(o in SOURCE_INCLUSION_OPTS for o in opts)


def needs_full_source(opts, orig_in_pool):
    """
    Whether -sa has to be added.

    Only for builds that produce a source package, when the caller did not
    pick -sa/-sd/-si, and when the repository does not have the orig
    tarball yet.
    """
    return builds_source(opts) and not has_source_inclusion_mode(opts) and not orig_in_pool


class PackageBuilder(BuildUtils):
    """
    Runs debuild inside a build tree.

    Args:
        debuild_cmd_opts: Options for debuild itself
        dpkg_buildpackage_opts: Options passed through to dpkg-buildpackage
        dry_run: Show what would be done without executing
    """

    def __init__(self, debuild_cmd_opts=None, dpkg_buildpackage_opts=None, dry_run=False, logs_dir=None):
        super().__init__(dry_run)
        self.debuild_cmd_opts = list(debuild_cmd_opts) if debuild_cmd_opts is not None else DEBUILD_CMD_OPTS.split()
        self.dpkg_buildpackage_opts = list(dpkg_buildpackage_opts or [])
        if logs_dir is not None:
            self.logs_dir = Path(logs_dir)

    @property
    def source_only(self):
        return is_source_only(self.dpkg_buildpackage_opts)

    def build_command(self, orig_in_pool):
        extra = ["-sa"] if needs_full_source(self.dpkg_buildpackage_opts, orig_in_pool) else []
        return ["debuild", *self.debuild_cmd_opts, "-uc", "-us", *self.dpkg_buildpackage_opts, *extra, "."]

    def create_stamp(self, pkg_dir):
        """Build-start marker; .changes newer than it belong to this build"""
        if self.dry_run:
            return None
        fd, path = tempfile.mkstemp(prefix=STAMP_PREFIX, dir=str(pkg_dir))
        os.close(fd)
        return Path(path)

    def build(self, name, build_tree, pkg_dir, identity, orig_in_pool, context=None):
        """
        Build one package.

        Args:
            name: Project name, used for log file names
            build_tree: Directory to run debuild in
            pkg_dir: Parent directory receiving the build products
            identity: PackageIdentity being built
            orig_in_pool: Whether the pool already holds the orig tarball

        Returns:
            Path or None: the build-start marker (None in dry-run mode)

        Raises:
            BuildFailedError: debuild exited non-zero
        """
        cmd = self.build_command(orig_in_pool)
        stamp = self.create_stamp(pkg_dir)

        if self.dry_run:
            self.format_dry_run(f"Would build {identity.source} {identity.version}", [
                f"In directory: {build_tree}",
                f"Command: {format_command(cmd)}",
            ])
            return stamp

        print(f"\n{'='*SEPARATOR_WIDTH}")
        print(f"Building {identity.source} {identity.version}")
        print(f"{'='*SEPARATOR_WIDTH}")

        self.logs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        log_file = self.logs_dir / f"{name}-{timestamp}-build.log"
        self.cleanup_old_logs(name)

        print(f"Running: {format_command(cmd)}")
        start_time = datetime.datetime.now().strftime("%a %b %d %H:%M:%S %Y")
        build_success = False
        try:
            with open(log_file, 'w') as f:
                f.write(f"==> Build started: {identity.source} {identity.version} ({start_time})\n")
                f.flush()

                try:
                    process = subprocess.Popen(cmd, cwd=build_tree,
                                               stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                                               text=True, bufsize=1, errors='replace')
                except FileNotFoundError:
                    raise MissingToolError(f"missing required command: {cmd[0]}", context=context, command=cmd)

                # Stream output to both console and log file
                for line in process.stdout:
                    sys.stdout.write(line)
                    f.write(line)
                process.wait()

                if process.returncode != 0:
                    f.write(f"\nBuild failed with return code: {process.returncode}\n")
                    raise BuildFailedError(
                        f"debuild exited with status {process.returncode} (log: {log_file})",
                        context=context, command=cmd, exit_code=process.returncode)
                build_success = True
        finally:
            end_time = datetime.datetime.now().strftime("%a %b %d %H:%M:%S %Y")
            status = "SUCCESS" if build_success else "FAILED"
            with open(log_file, 'a') as f:
                f.write(f"==> Build finished: {identity.source} {identity.version} ({end_time}) [{status}]\n")

        print(f"Successfully built {identity.source} {identity.version}")
        return stamp
