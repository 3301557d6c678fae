#!/usr/bin/env python3
"""
Clone or update upstream git working trees.

Every tree is forced to match the remote default branch head: local
branches are reset hard so force-pushed or diverged history never blocks
an update. Local modifications are never discarded silently; a dirty tree
stops the run.
"""

from dataclasses import dataclass
from pathlib import Path

from utils import BuildUtils, DEFAULT_BRANCH, DirtyTreeError, RefNotFoundError


@dataclass
class FetchResult:
    branch: str
    head: str
    cloned: bool = False


class SourceFetcher(BuildUtils):
    """Working tree management for one project at a time"""

    def __init__(self, dry_run=False, default_branch=DEFAULT_BRANCH):
        super().__init__(dry_run)
        self.default_branch = default_branch

    def git(self, src_dir, *args, capture_output=True, check=True, mutates=True, context=None,
            error_class=None):
        cmd = ["git", "-C", str(src_dir), *args]
        kwargs = {}
        if error_class is not None:
            kwargs['error_class'] = error_class
        return self.run_command(cmd, capture_output=capture_output, check=check, mutates=mutates,
                                context=context, **kwargs)

    def is_clean(self, src_dir, context=None):
        """True when there are neither unstaged nor staged changes"""
        unstaged = self.git(src_dir, "diff", "--quiet", check=False, mutates=False, context=context)
        staged = self.git(src_dir, "diff", "--cached", "--quiet", check=False, mutates=False, context=context)
        return unstaged.returncode == 0 and staged.returncode == 0

    def default_branch_of(self, src_dir, context=None):
        """Resolve the remote default branch from origin/HEAD, falling back to the configured name"""
        result = self.git(src_dir, "symbolic-ref", "--quiet", "--short", "refs/remotes/origin/HEAD",
                          check=False, mutates=False, context=context)
        ref = result.stdout.strip() if result.returncode == 0 and result.stdout else ""
        if ref.startswith("origin/"):
            ref = ref[len("origin/"):]
        return ref or self.default_branch

    def remote_branch_exists(self, src_dir, branch, context=None):
        result = self.git(src_dir, "rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{branch}",
                          check=False, mutates=False, context=context)
        return result.returncode == 0

    def local_branch_exists(self, src_dir, branch, context=None):
        result = self.git(src_dir, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}",
                          check=False, mutates=False, context=context)
        return result.returncode == 0

    def head_commit(self, src_dir, context=None):
        result = self.git(src_dir, "rev-parse", "HEAD", check=False, mutates=False, context=context)
        return result.stdout.strip() if result.returncode == 0 and result.stdout else ""

    def tracked_files(self, src_dir, context=None):
        """Paths of every file in the index, relative to src_dir"""
        result = self.git(src_dir, "ls-files", "-z", mutates=False, context=context)
        return [path for path in result.stdout.split("\0") if path]

    def commit_timestamp(self, src_dir, context=None):
        """Committer time of HEAD, used to clamp archive mtimes"""
        result = self.git(src_dir, "log", "-1", "--format=%ct", "HEAD",
                          check=False, mutates=False, context=context)
        try:
            return int(result.stdout.strip())
        except (ValueError, AttributeError):
            return 0

    def fetch(self, entry, src_dir, context=None):
        """
        Produce a working tree at the exact head of the remote default branch.

        Args:
            entry: ProjectEntry with the clone URL
            src_dir: Local clone location
            context: ProjectContext for diagnostics

        Returns:
            FetchResult: resolved branch and resulting HEAD commit

        Raises:
            DirtyTreeError: existing clone has local modifications
            RefNotFoundError: origin/<branch> does not exist
        """
        src_dir = Path(src_dir)
        cloned = False

        if not (src_dir / ".git").exists():
            src_dir.parent.mkdir(parents=True, exist_ok=True)
            self.run_command(["git", "clone", entry.url, str(src_dir)], context=context)
            cloned = True
        else:
            if not self.is_clean(src_dir, context):
                raise DirtyTreeError(f"working tree not clean: {src_dir}", context=context)
            self.git(src_dir, "fetch", "--prune", "origin", capture_output=False, context=context)

        if self.dry_run and cloned:
            self.format_dry_run(f"Would check out default branch of {entry.url}")
            return FetchResult(branch=self.default_branch, head="", cloned=True)

        branch = self.default_branch_of(src_dir, context)
        if not self.remote_branch_exists(src_dir, branch, context):
            raise RefNotFoundError(f"remote branch not found: origin/{branch}", context=context,
                                   command=["git", "-C", str(src_dir), "rev-parse", "--verify",
                                            f"refs/remotes/origin/{branch}"])

        if self.local_branch_exists(src_dir, branch, context):
            self.git(src_dir, "checkout", branch, context=context)
        else:
            self.git(src_dir, "checkout", "-b", branch, "--track", f"origin/{branch}", context=context)
        self.git(src_dir, "reset", "--hard", f"origin/{branch}", context=context)

        head = self.head_commit(src_dir, context)
        print(f"Checked out {branch} at {head[:12] if head else 'unknown'}")
        return FetchResult(branch=branch, head=head, cloned=cloned)
