#!/usr/bin/env python3
"""
Debian package repository builder.

Clones/updates each URL in the project list (default branch), builds it
with debuild and includes the resulting *.changes into a reprepro
repository. After all projects, the codename is exported and the HTML
index regenerated.

Per project the pipeline is:

    clone/update -> prepare -> skip check -> orig tarball -> debuild -> include

Any failure aborts the whole run and is reported with the project name,
URL, step and failing command.

Environment:
  LIST_FILE               Path to list file (default: ./list.txt)
  REPO_DIR                reprepro base dir (default: ./repository)
  CODENAME                reprepro codename to include into (default: trixie)
  WORK_DIR                Workspace (default: ./work)
  FORCE_ORIG              1 to regenerate *.orig.tar.gz (default: 0)
  FORCE_REBUILD           1 to rebuild versions already in the repository (default: 0)
  HOST_ARCH               Architecture used by the skip check (default: dpkg --print-architecture)
  DEBUILD_CMD_OPTS        Options for debuild itself (default: "--no-lintian")
  DPKG_BUILDPACKAGE_OPTS  Options passed to dpkg-buildpackage (e.g. "-S -d")
  DEBUILD_OPTS            Alias for DPKG_BUILDPACKAGE_OPTS
  GPG_PASSPHRASE_FILE     File with the signing key passphrase, primed into gpg-agent
"""

import argparse
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path

from debian import deb822

from build_tree import BuildTreePreparer, read_package_identity, read_source_format
from gen_index import write_index
from git_source import SourceFetcher
from orig_tarball import OrigTarballManager
from package_builder import PackageBuilder
from reprepro import ChecksumConflict, IncludeSuccess, Reprepro
from utils import (
    CODENAME, DEBUILD_CMD_OPTS, LIST_FILE, REPO_DIR, ROOT_DIR, WORK_DIR,
    BuildUtils, EnvironmentSetupError, IncludeError, MissingToolError, NoArtifactsError, PipelineError,
    ProjectContext, env_flag, load_project_list, need_cmd, resolve_path,
    safe_path_join, split_options, want_project, warn
)

REQUIRED_TOOLS = ['git', 'debuild', 'reprepro', 'tar']


@dataclass
class BuildSettings:
    """Everything a run needs, resolved from config.ini and the environment"""
    list_file: Path
    repo_dir: Path
    codename: str
    work_dir: Path
    force_orig: bool = False
    force_rebuild: bool = False
    host_arch: str = ""
    debuild_cmd_opts: tuple = ()
    dpkg_buildpackage_opts: tuple = ()
    gpg_passphrase_file: str = ""
    index_file: Path = None

    @classmethod
    def from_environment(cls, environ=None):
        environ = os.environ if environ is None else environ
        dpkg_opts = environ.get('DPKG_BUILDPACKAGE_OPTS') or environ.get('DEBUILD_OPTS') or ""
        return cls(
            list_file=resolve_path(environ.get('LIST_FILE') or LIST_FILE),
            repo_dir=resolve_path(environ.get('REPO_DIR') or REPO_DIR),
            codename=environ.get('CODENAME') or CODENAME,
            work_dir=resolve_path(environ.get('WORK_DIR') or WORK_DIR),
            force_orig=env_flag("FORCE_ORIG", environ=environ),
            force_rebuild=env_flag("FORCE_REBUILD", environ=environ),
            host_arch=environ.get('HOST_ARCH', ''),
            debuild_cmd_opts=tuple(split_options(environ.get('DEBUILD_CMD_OPTS') or DEBUILD_CMD_OPTS)),
            dpkg_buildpackage_opts=tuple(split_options(dpkg_opts)),
            gpg_passphrase_file=environ.get('GPG_PASSPHRASE_FILE', ''),
            index_file=resolve_path(environ.get('INDEX_FILE') or 'index.html'),
        )


@dataclass
class ProjectResult:
    name: str
    status: str
    version: str = ""
    included: tuple = ()


def find_changes(pkg_dir, identity, stamp=None):
    """
    .changes files produced for identity in pkg_dir.

    When the build-start marker exists only files newer than it are
    returned, so leftovers of earlier failed builds are ignored.
    """
    pattern = f"{identity.source}_{identity.version_without_epoch}_*.changes"
    candidates = sorted(p for p in Path(pkg_dir).glob(pattern) if p.is_file())
    if stamp is not None and Path(stamp).exists():
        stamp_mtime = Path(stamp).stat().st_mtime
        candidates = [p for p in candidates if p.stat().st_mtime > stamp_mtime]
    return candidates


def read_changes_architectures(changes_file):
    """Architecture field of a .changes file"""
    with open(changes_file, 'r', errors='replace') as f:
        changes = deb822.Changes(f)
    return changes.get('Architecture', '').split()


class RepoBuilder(BuildUtils):
    """
    Sequential build-and-include driver for a project list.

    Projects are processed one at a time in list order; reprepro is never
    invoked concurrently.
    """

    def __init__(self, settings, dry_run=False, fetcher=None, preparer=None, repo=None,
                 builder=None, orig_manager=None):
        super().__init__(dry_run)
        self.settings = settings
        self.repo = repo or Reprepro(settings.repo_dir, dry_run=dry_run)
        self.fetcher = fetcher or SourceFetcher(dry_run=dry_run)
        self.preparer = preparer or BuildTreePreparer(dry_run=dry_run)
        self.builder = builder or PackageBuilder(settings.debuild_cmd_opts, settings.dpkg_buildpackage_opts,
                                                 dry_run=dry_run, logs_dir=ROOT_DIR / "logs")
        self.orig_manager = orig_manager or OrigTarballManager(self.repo, force=settings.force_orig,
                                                               dry_run=dry_run)
        self._host_arch = settings.host_arch or None

        # Set up signal handler; trees are left as-is for inspection
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        print(f"\nReceived signal {signum}, aborting", file=sys.stderr)
        sys.exit(1)

    def check_environment(self):
        """Environment errors are fatal before any project is touched"""
        for tool in REQUIRED_TOOLS:
            need_cmd(tool)
        if not self.settings.list_file.is_file():
            raise EnvironmentSetupError(f"list file not found: {self.settings.list_file}")
        self.repo.require_initialized()
        self.settings.work_dir.mkdir(parents=True, exist_ok=True)

    @property
    def host_arch(self):
        if self._host_arch is None:
            result = self.run_command(["dpkg", "--print-architecture"], capture_output=True, mutates=False)
            self._host_arch = result.stdout.strip()
        return self._host_arch

    def prime_passphrase(self):
        """
        Cache the signing key passphrase in gpg-agent.

        Best effort: reprepro can still fall back to an agent-cached or
        interactive passphrase, so failures only warn.
        """
        passphrase_file = self.settings.gpg_passphrase_file
        if not passphrase_file:
            return False
        key = self.repo.sign_with(self.settings.codename)
        if not key:
            return False
        if not Path(passphrase_file).is_file():
            warn(f"GPG passphrase file not found: {passphrase_file}")
            return False
        try:
            result = self.run_command([
                "gpg", "--batch", "--yes", "--pinentry-mode", "loopback",
                "--passphrase-file", passphrase_file, "--local-user", key,
                "--output", os.devnull, "--sign", os.devnull,
            ], capture_output=True, check=False)
        except MissingToolError as e:
            warn(f"could not prime passphrase for {key}: {e.message}")
            return False
        if result.returncode != 0:
            warn(f"could not prime passphrase for {key}: {(result.stderr or '').strip()}")
            return False
        print(f"Primed gpg-agent passphrase for {key}")
        return True

    def should_skip(self, identity, context=None):
        """True when this exact version is already in the repository"""
        if self.settings.force_rebuild:
            return False
        archs = self.repo.source_version_architectures(self.settings.codename, identity.source,
                                                       identity.version, context=context)
        if self.builder.source_only:
            return "source" in archs
        return self.host_arch in archs

    def include_changes(self, pkg_dir, identity, stamp, context=None):
        """
        Include every fresh .changes of this build into the codename.

        A checksum conflict is resolved only under FORCE_REBUILD: the
        conflicting entries are removed, unreferenced pool files deleted and
        the include retried exactly once.

        Returns:
            list: included .changes paths
        """
        codename = self.settings.codename
        changes = find_changes(pkg_dir, identity, stamp)
        if not changes:
            if self.dry_run:
                self.format_dry_run(f"Would include {identity.source}_{identity.version_without_epoch}_*.changes")
                return []
            raise NoArtifactsError(
                f"no .changes found for {identity.source}_{identity.version_without_epoch} in {pkg_dir}",
                context=context)

        included = []
        for ch in changes:
            result = self.repo.include(codename, ch, context=context)
            if isinstance(result, ChecksumConflict) and self.settings.force_rebuild:
                archs = [a for a in read_changes_architectures(ch) if a != "source"]
                print(f"Checksum conflict for {ch.name}; removing {identity.source} {identity.version} "
                      f"({' '.join(archs) or 'all architectures'}) and retrying")
                self.repo.remove_source_version(codename, identity.source, identity.version, archs,
                                                context=context)
                self.repo.delete_unreferenced(context=context)
                result = self.repo.include(codename, ch, context=context)
            if not isinstance(result, IncludeSuccess):
                raise IncludeError(result.output.strip() or f"reprepro include failed for {ch}",
                                   context=context,
                                   command=["reprepro", "-b", str(self.repo.repo_dir), "include", codename, str(ch)])
            included.append(ch)
        return included

    def _step(self, ctx, fn, *args, **kwargs):
        """Run one pipeline stage, attaching ctx to whatever it raises"""
        try:
            return fn(*args, **kwargs)
        except PipelineError as e:
            raise e.with_context(ctx)
        except OSError as e:
            raise PipelineError(str(e), context=ctx)

    def process_project(self, entry):
        """Run one project through the pipeline; raises PipelineError on failure"""
        ctx = ProjectContext(entry.name, entry.url, "clone/update")
        print(f"==> [{entry.name}] {entry.url}", file=sys.stderr)

        try:
            pkg_dir = safe_path_join(self.settings.work_dir, entry.name)
        except ValueError as e:
            raise PipelineError(str(e), context=ctx)
        src_dir = pkg_dir / "src"
        pkg_dir.mkdir(parents=True, exist_ok=True)

        fetched = self._step(ctx, self.fetcher.fetch, entry, src_dir, context=ctx)
        if self.dry_run and fetched.cloned:
            return ProjectResult(entry.name, "dry-run")

        ctx = ctx.at("prepare")
        identity = self._step(ctx, read_package_identity, src_dir, context=ctx)
        tree = self._step(ctx, self.preparer.prepare, src_dir, pkg_dir, identity, context=ctx)

        ctx = ctx.at("skip check")
        if self._step(ctx, self.should_skip, identity, context=ctx):
            print(f"==> [{entry.name}] {identity.source} {identity.version} already in "
                  f"{self.settings.codename}, skipping", file=sys.stderr)
            return ProjectResult(entry.name, "skipped", identity.version)

        ctx = ctx.at("orig tarball")
        orig_in_pool = self._step(ctx, self.repo.has_pool_file, identity.source, identity.orig_tarball_name)
        mtime = self.fetcher.commit_timestamp(src_dir, context=ctx)
        tracked = self._step(ctx, self.fetcher.tracked_files, src_dir, context=ctx)
        self._step(ctx, self.orig_manager.ensure, identity, tree.path, pkg_dir, tracked=tracked,
                   source_format=read_source_format(src_dir), mtime=mtime)

        ctx = ctx.at("debuild")
        stamp = self._step(ctx, self.builder.build, entry.name, tree.path, pkg_dir, identity, orig_in_pool,
                           context=ctx)

        ctx = ctx.at("reprepro include")
        included = self._step(ctx, self.include_changes, pkg_dir, identity, stamp, context=ctx)
        if stamp is not None and stamp.exists():
            stamp.unlink()
        print(f"==> [{entry.name}] OK", file=sys.stderr)
        return ProjectResult(entry.name, "built", identity.version, tuple(included))

    def run(self, filters=None):
        """
        Build every selected project, then export and regenerate the index.

        Returns:
            list: ProjectResult per processed project
        """
        self.check_environment()
        self.prime_passphrase()

        results = []
        for entry in load_project_list(self.settings.list_file):
            if not want_project(entry.name, filters):
                continue
            try:
                results.append(self.process_project(entry))
            except PipelineError as e:
                raise e.with_context(ProjectContext(entry.name, entry.url))

        ctx = ProjectContext(step="reprepro export")
        self.repo.export(self.settings.codename, context=ctx)
        ctx = ctx.at("gen-index")
        try:
            write_index(self.repo, self.settings.index_file, dry_run=self.dry_run)
        except PipelineError as e:
            raise e.with_context(ctx)

        built = [r for r in results if r.status == "built"]
        skipped = [r for r in results if r.status == "skipped"]
        print(f"Done. Repo: {self.settings.repo_dir} (codename: {self.settings.codename}); "
              f"built {len(built)}, skipped {len(skipped)}")
        return results


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Build Debian packages from git repositories into a reprepro repository",
        epilog="Environment:" + __doc__.split("Environment:", 1)[1],
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('names', nargs='*', metavar='repo-name',
                        help='Only build these projects (default: all in the list file)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show what would be done without executing')
    args = parser.parse_args(argv)

    settings = BuildSettings.from_environment()
    try:
        builder = RepoBuilder(settings, dry_run=args.dry_run)
        builder.run(args.names)
    except PipelineError as e:
        print(e.format_report(), file=sys.stderr)
        sys.exit(e.exit_code)
    return 0


if __name__ == "__main__":
    main()
