#!/usr/bin/env python3
"""
Build tree preparation and package identity resolution.

Decides whether a working tree can be built in place or has to be exported
to a clean directory first, and applies the narrow debian/rules fixups
needed on hosts whose debhelper lacks an addon.
"""

import datetime
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from utils import (
    BuildUtils, ChangelogError, CommandError, PackageIdentity, warn
)

IN_PLACE_FORMATS = {"3.0 (quilt)", "3.0 (native)"}
NATIVE_FORMAT = "3.0 (native)"

CHANGELOG_HEADER = re.compile(r'^(?P<source>[a-z0-9][a-z0-9+.-]*)\s+\((?P<version>[^()\s]+)\)')


def read_source_format(tree):
    """Contents of debian/source/format, or None when the file is absent"""
    fmt_file = Path(tree) / "debian" / "source" / "format"
    if not fmt_file.is_file():
        return None
    return fmt_file.read_text().strip()


def parse_changelog_header(text):
    """Return (source, version) from the first entry of a changelog"""
    for line in text.splitlines():
        if not line.strip():
            continue
        match = CHANGELOG_HEADER.match(line)
        if match is None:
            return None
        return match.group('source'), match.group('version')
    return None


def read_package_identity(tree, context=None) -> PackageIdentity:
    """
    Read source name and version from debian/changelog.

    Raises:
        ChangelogError: changelog missing or first entry malformed
    """
    changelog = Path(tree) / "debian" / "changelog"
    if not changelog.is_file():
        raise ChangelogError(f"no debian/changelog in {tree}", context=context)
    parsed = parse_changelog_header(changelog.read_text(errors='replace'))
    if parsed is None:
        raise ChangelogError(f"cannot parse first entry of {changelog}", context=context)
    source, version = parsed
    return PackageIdentity(source=source, version=version)


def rules_reference_addon(tree, addon):
    rules = Path(tree) / "debian" / "rules"
    if not rules.is_file():
        return False
    pattern = re.compile(rf'--with[=\s]+(?:\S+,)?{re.escape(addon)}\b|with {re.escape(addon)}\b')
    return bool(pattern.search(rules.read_text(errors='replace')))


@dataclass
class BuildTree:
    path: Path
    exported: bool = False
    patched: bool = False


class BuildTreePreparer(BuildUtils):
    """Chooses and materializes the directory debuild runs in"""

    def __init__(self, dry_run=False):
        super().__init__(dry_run)
        self._dh_addons = None

    def dh_addons(self):
        """Addons known to the local debhelper (dh --list), cached per run"""
        if self._dh_addons is None:
            result = self.run_command(["dh", "--list"], capture_output=True, check=False, mutates=False)
            if result.returncode != 0:
                warn("dh --list failed; assuming no debhelper addons are available")
                self._dh_addons = set()
            else:
                self._dh_addons = {line.strip() for line in result.stdout.splitlines() if line.strip()}
        return self._dh_addons

    def dh_addon_available(self, addon):
        return addon in self.dh_addons()

    def needs_addon_patch(self, tree, addon="quilt"):
        return rules_reference_addon(tree, addon) and not self.dh_addon_available(addon)

    def untracked_files(self, tree, context=None):
        """Untracked, non-ignored files outside debian/"""
        result = self.run_command(["git", "-C", str(tree), "ls-files", "--others", "--exclude-standard"],
                                  capture_output=True, mutates=False, context=context)
        return [path for path in result.stdout.splitlines()
                if path and not (path == "debian" or path.startswith("debian/"))]

    def needs_export(self, tree, context=None):
        """
        Decide whether the working tree must be exported before building.

        Returns:
            tuple: (needs_export, reason)
        """
        fmt = read_source_format(tree)
        if fmt is None:
            return True, "debian/source/format missing"
        if fmt not in IN_PLACE_FORMATS:
            return True, f"source format '{fmt}'"
        if self.needs_addon_patch(tree, "quilt"):
            return True, "debian/rules needs the quilt addon"
        untracked = self.untracked_files(tree, context)
        if untracked:
            return True, f"{len(untracked)} untracked file(s), e.g. {untracked[0]}"
        return False, ""

    def export_worktree(self, src_dir, out_dir, context=None):
        """
        Materialize the tracked content of HEAD into out_dir.

        If out_dir cannot be removed because of permissions, a fresh sibling
        directory is used instead.

        Returns:
            Path: directory actually populated
        """
        out_dir = Path(out_dir)
        if self.dry_run:
            self.format_dry_run(f"Would export {src_dir} to {out_dir}", [
                f"rm -rf {out_dir}",
                f"git -C {src_dir} archive --format=tar HEAD | tar -x -C {out_dir}",
            ])
            return out_dir

        if out_dir.exists():
            try:
                shutil.rmtree(out_dir)
            except PermissionError as e:
                timestamp = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
                fallback = out_dir.with_name(f"{out_dir.name}.{timestamp}")
                warn(f"cannot remove {out_dir} ({e}); exporting to {fallback}")
                out_dir = fallback
        out_dir.mkdir(parents=True, exist_ok=True)

        archive_cmd = ["git", "-C", str(src_dir), "archive", "--format=tar", "HEAD"]
        extract_cmd = ["tar", "-x", "-C", str(out_dir)]
        print(f"Exporting {src_dir} HEAD to {out_dir}")
        archive = subprocess.Popen(archive_cmd, stdout=subprocess.PIPE)
        extract = subprocess.run(extract_cmd, stdin=archive.stdout, capture_output=True, text=True)
        archive.stdout.close()
        archive.wait()
        if archive.returncode != 0:
            raise CommandError(f"git archive exited with status {archive.returncode}",
                               context=context, command=archive_cmd)
        if extract.returncode != 0:
            raise CommandError(f"tar exited with status {extract.returncode}: {extract.stderr.strip()}",
                               context=context, command=extract_cmd)
        return out_dir

    def patch_drop_addon(self, tree, addon="quilt"):
        """Drop '--with <addon>' from debian/rules; returns True if the file changed"""
        rules = Path(tree) / "debian" / "rules"
        if not rules.is_file():
            return False
        content = rules.read_text()
        patched = re.sub(rf'[ \t]+--with[ \t]+{re.escape(addon)}\b', '', content)
        patched = re.sub(rf'[ \t]+--with={re.escape(addon)}\b', '', patched)
        if patched == content:
            return False
        print(f"Patching {rules}: dropping '--with {addon}' (not available on this debhelper)")
        if self.dry_run:
            return True
        rules.write_text(patched)
        return True

    def prepare(self, src_dir, pkg_dir, identity, context=None) -> BuildTree:
        """Return the tree to build in, exporting and patching as required"""
        src_dir = Path(src_dir)
        export, reason = self.needs_export(src_dir, context)
        needs_patch = self.needs_addon_patch(src_dir, "quilt")

        tree = BuildTree(path=src_dir)
        if export:
            print(f"Building from an export of HEAD: {reason}")
            tree.path = self.export_worktree(src_dir, Path(pkg_dir) / identity.export_dir_name, context)
            tree.exported = True
        if needs_patch:
            tree.patched = self.patch_drop_addon(tree.path, "quilt")
        return tree
