#!/usr/bin/env python3
"""
Upstream orig tarball management.

reprepro refuses to register a file under a name it already knows with
different checksums, so every Debian revision of one upstream version
must ship the exact same <source>_<upstream>.orig.tar.gz. The manager
therefore prefers the copy already in the repository pool and otherwise
generates the archive reproducibly (sorted members, normalized owners,
fixed mtimes, no gzip timestamp).
"""

import gzip
import os
import shutil
import tarfile
from pathlib import Path, PurePosixPath

from build_tree import NATIVE_FORMAT

# Names skipped anywhere in the tree, same set as tar --exclude-vcs
VCS_NAMES = {
    "CVS", ".cvsignore", "RCS", "SCCS",
    ".git", ".gitignore", ".gitattributes", ".gitmodules",
    ".arch-ids", "{arch}", "=RELEASE-ID", "=meta-update", "=update",
    ".bzr", ".bzrignore", ".bzrtags",
    ".hg", ".hgignore", ".hgtags",
    "_darcs", ".svn",
}
PACKAGING_DIR = "debian"


def iter_archive_members(tracked):
    """
    Relative paths of every archived entry, in deterministic order.

    tracked is the list of files git knows about (git ls-files). Parent
    directories are added and listed before their contents; debian/ at the
    top level and VCS metadata at any level are skipped.
    """
    members = set()
    for name in tracked:
        parts = PurePosixPath(name).parts
        if not parts or parts[0] == PACKAGING_DIR:
            continue
        if any(part in VCS_NAMES for part in parts):
            continue
        for depth in range(1, len(parts) + 1):
            members.add(parts[:depth])
    for parts in sorted(members):
        yield Path(*parts)


def write_reproducible_tarball(tree, output, prefix, tracked, mtime=0):
    """
    Archive the tracked files of tree into output as a gzip-compressed
    tarball rooted at prefix/. Ignored build leftovers lying in tree are
    not archived.

    The result depends only on file names, contents, modes and symlink
    targets: owners are root, every mtime is set to mtime and the gzip
    header carries neither a timestamp nor a file name.
    """
    tree = Path(tree)
    output = Path(output)
    tmp = output.with_name(output.name + ".tmp")

    def normalize(info):
        info.uid = info.gid = 0
        info.uname = info.gname = "root"
        info.mtime = mtime
        return info

    with open(tmp, 'wb') as raw:
        with gzip.GzipFile(filename='', mode='wb', fileobj=raw, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode='w', format=tarfile.GNU_FORMAT) as tar:
                root = tar.gettarinfo(str(tree), arcname=prefix)
                tar.addfile(normalize(root))
                for rel in iter_archive_members(tracked):
                    path = tree / rel
                    if not os.path.lexists(path):
                        # export-ignore'd by git archive
                        continue
                    info = tar.gettarinfo(str(path), arcname=f"{prefix}/{rel.as_posix()}")
                    if info is None:
                        # sockets and other types tar cannot store
                        continue
                    info = normalize(info)
                    if info.isreg():
                        with open(path, 'rb') as f:
                            tar.addfile(info, f)
                    else:
                        tar.addfile(info)
    tmp.replace(output)
    return output


class OrigTarballManager:
    """
    Ensures an orig tarball exists next to the build tree before building.

    Args:
        repo: Reprepro adapter used to look up the pool
        force: Always regenerate, ignoring pool and local copies
        dry_run: Report instead of writing
    """

    def __init__(self, repo, force=False, dry_run=False):
        self.repo = repo
        self.force = force
        self.dry_run = dry_run

    def required(self, identity, source_format=None):
        if source_format == NATIVE_FORMAT:
            return False
        return not identity.is_native

    def ensure(self, identity, build_tree, out_dir, tracked=(), source_format=None, mtime=0):
        """
        Make sure <out_dir>/<source>_<upstream>.orig.tar.gz exists.

        tracked lists the files of the commit being built (git ls-files);
        only those are archived when the tarball is generated.

        Returns:
            Path or None: tarball path, None for native packages
        """
        if not self.required(identity, source_format):
            print(f"{identity.source} {identity.version} is native, no orig tarball needed")
            return None

        orig = Path(out_dir) / identity.orig_tarball_name

        if not self.force:
            pool_copy = self.repo.pool_path(identity.source, identity.orig_tarball_name)
            if pool_copy.is_file():
                print(f"Reusing orig tarball from pool: {pool_copy}")
                if not self.dry_run:
                    shutil.copyfile(pool_copy, orig)
                return orig
            if orig.is_file():
                print(f"Reusing existing orig tarball: {orig}")
                return orig

        print(f"Generating orig tarball: {orig}")
        if self.dry_run:
            return orig
        return write_reproducible_tarball(build_tree, orig, identity.export_dir_name, tracked, mtime=mtime)
