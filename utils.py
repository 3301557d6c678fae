#!/usr/bin/env python3
"""
Shared utility functions for the Debian package repository builder.

This module provides common functionality used across multiple scripts:
- Configuration loading (config.ini plus environment overrides)
- Project list parsing and name filtering
- Package name validation and path safety
- Debian version splitting (epoch, upstream version, revision)
- Error taxonomy with per-project diagnostic context
- Build utilities (command execution, dry-run, log rotation)

External tools (git, debuild, reprepro, gpg, rsync) are never reimplemented
here; this module only sequences them and interprets their results.
"""

import os
import re
import shlex
import shutil
import subprocess
import sys
import configparser
from dataclasses import dataclass
from pathlib import Path

from colorama import Fore, Style

ROOT_DIR = Path(__file__).resolve().parent

# Load configuration
config = configparser.ConfigParser()
config.read(ROOT_DIR / 'config.ini')

# Configuration constants
LIST_FILE = config.get('build', 'list_file', fallback='list.txt')
REPO_DIR = config.get('build', 'repo_dir', fallback='repository')
CODENAME = config.get('build', 'codename', fallback='trixie')
WORK_DIR = config.get('build', 'work_dir', fallback='work')
DEFAULT_BRANCH = config.get('build', 'default_branch', fallback='main')
DEBUILD_CMD_OPTS = config.get('build', 'debuild_cmd_opts', fallback='--no-lintian')
LOG_RETENTION_COUNT = 3

# Directory constants
LOGS_DIR = "logs"
DISTRIBUTIONS_FILE = Path("conf") / "distributions"

SEPARATOR_WIDTH = 60          # Width of === separator lines
EXIT_MISSING_TOOL = 127


def resolve_path(value, root=ROOT_DIR) -> Path:
    """Resolve a configured path relative to the project root"""
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = Path(root) / path
    return path


def env_flag(name, default=False, environ=None) -> bool:
    """Read a 0/1 style flag from the environment"""
    environ = os.environ if environ is None else environ
    value = environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "yes", "true", "on")


def split_options(value):
    """Split an option string the way the shell would"""
    if not value:
        return []
    return shlex.split(value)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

@dataclass
class ProjectContext:
    """Diagnostic context of the project currently moving through the pipeline"""
    name: str = ""
    url: str = ""
    step: str = ""

    def at(self, step):
        """Return a copy of this context positioned at another step"""
        return ProjectContext(self.name, self.url, step)


class PipelineError(Exception):
    """
    Base class for every fatal condition of a run.

    Carries the project context (name, URL, step) and the failing command so
    the top-level handler can print a structured diagnostic.
    """
    exit_code = 1

    def __init__(self, message, context=None, command=None, exit_code=None):
        super().__init__(message)
        self.message = message
        self.context = context
        self.command = command
        if exit_code is not None:
            self.exit_code = exit_code

    def with_context(self, context):
        """Attach a context unless one is already present"""
        if self.context is None:
            self.context = context
        return self

    def format_report(self, script="build_repo.py"):
        lines = ["", f"ERROR: {script} failed (exit={self.exit_code})", f"  {self.message}"]
        if self.context is not None:
            if self.context.name:
                lines.append(f"  package: {self.context.name}")
            if self.context.url:
                lines.append(f"  url: {self.context.url}")
            if self.context.step:
                lines.append(f"  step: {self.context.step}")
        if self.command:
            lines.append(f"  command: {format_command(self.command)}")
        lines.append("")
        return "\n".join(lines)


class MissingToolError(PipelineError):
    exit_code = EXIT_MISSING_TOOL


class EnvironmentSetupError(PipelineError):
    """Missing list file, uninitialized repository and the like"""


class DirtyTreeError(PipelineError):
    """Working tree has staged or unstaged changes"""


class RefNotFoundError(PipelineError):
    """Remote branch could not be resolved"""


class ChangelogError(PipelineError):
    """debian/changelog missing or unparseable"""


class CommandError(PipelineError):
    """An external command exited non-zero"""


class BuildFailedError(CommandError):
    """The package build command failed"""


class NoArtifactsError(PipelineError):
    """A build finished without producing any .changes file"""


class IncludeError(PipelineError):
    """reprepro refused a .changes file"""


def format_command(cmd):
    if isinstance(cmd, (list, tuple)):
        return ' '.join(shlex.quote(str(part)) for part in cmd)
    return str(cmd)


def need_cmd(name):
    """Fail with exit code 127 when a required external tool is missing"""
    if shutil.which(name) is None:
        raise MissingToolError(f"missing required command: {name}")


# ---------------------------------------------------------------------------
# Project list
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProjectEntry:
    url: str
    name: str


ORDINAL_PREFIX = re.compile(r'^[0-9]+\.\s*')


def project_name_from_url(url: str) -> str:
    """Short project name: URL basename without a trailing .git"""
    name = url.rstrip('/').rsplit('/', 1)[-1]
    if ':' in name:
        # scp-like git@host:project.git
        name = name.rsplit(':', 1)[-1]
    if name.endswith('.git'):
        name = name[:-len('.git')]
    return name


def parse_list_line(raw):
    """
    Parse one line of the project list.

    Strips a trailing '#' comment, surrounding whitespace and an optional
    leading ordinal such as '3. '.

    Returns:
        ProjectEntry or None for blank/comment lines
    """
    line = raw.split('#', 1)[0].strip()
    line = ORDINAL_PREFIX.sub('', line).strip()
    if not line:
        return None
    return ProjectEntry(url=line, name=project_name_from_url(line))


def load_project_list(list_file):
    """Load project entries in file order"""
    entries = []
    with open(list_file, 'r') as f:
        for raw in f:
            entry = parse_list_line(raw)
            if entry is not None:
                entries.append(entry)
    return entries


def want_project(name, filters):
    """Case-insensitive match against the command line filters; no filters means all"""
    if not filters:
        return True
    return any(name.lower() == f.lower() for f in filters)


def validate_package_name(pkg_name: str) -> bool:
    """
    Validate a project or source package name.

    Ensures names only contain safe characters so they can be used as
    directory names under the work directory.
    """
    VALID_PKG_NAME = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9+._-]*$')
    return bool(VALID_PKG_NAME.match(pkg_name))


def safe_path_join(base: Path, user_input: str) -> Path:
    """
    Safely join paths preventing traversal attacks.

    Raises:
        ValueError: If path traversal is detected or name is invalid
    """
    if not validate_package_name(user_input):
        raise ValueError(f"Invalid package name: {user_input}")

    path = base / user_input
    if not path.resolve().is_relative_to(base.resolve()):
        raise ValueError("Path traversal detected")
    return path


# ---------------------------------------------------------------------------
# Debian versions
# ---------------------------------------------------------------------------

def split_debian_version(version_str: str) -> tuple:
    """
    Split a Debian version into (epoch, upstream, revision).

    The epoch is everything before the first ':', the revision everything
    after the last '-'. Missing parts are returned as None.
    """
    epoch = None
    rest = version_str
    if ':' in rest:
        epoch, rest = rest.split(':', 1)
    revision = None
    if '-' in rest:
        rest, revision = rest.rsplit('-', 1)
    return epoch, rest, revision


def upstream_version(version_str: str) -> str:
    return split_debian_version(version_str)[1]


def is_native_version(version_str: str) -> bool:
    """Native packages have no Debian revision"""
    return split_debian_version(version_str)[2] is None


def strip_epoch(version_str: str) -> str:
    """Version as it appears in file names"""
    return version_str.split(':', 1)[1] if ':' in version_str else version_str


@dataclass(frozen=True)
class PackageIdentity:
    source: str
    version: str

    @property
    def epoch(self):
        return split_debian_version(self.version)[0]

    @property
    def upstream_version(self):
        return upstream_version(self.version)

    @property
    def debian_revision(self):
        return split_debian_version(self.version)[2]

    @property
    def is_native(self):
        return is_native_version(self.version)

    @property
    def version_without_epoch(self):
        return strip_epoch(self.version)

    @property
    def orig_tarball_name(self):
        return f"{self.source}_{self.upstream_version}.orig.tar.gz"

    @property
    def export_dir_name(self):
        return f"{self.source}-{self.upstream_version}"


# ---------------------------------------------------------------------------
# Command execution
# ---------------------------------------------------------------------------

class BuildUtils:
    """
    Shared utilities for the repository scripts.

    Provides command execution with consistent echoing, error wrapping and
    dry-run support, plus build log rotation.
    """

    def __init__(self, dry_run=False):
        self.dry_run = dry_run
        self.logs_dir = Path(LOGS_DIR)

    def run_command(self, cmd, cwd=None, capture_output=False, check=True, env=None, mutates=True,
                    context=None, error_class=CommandError):
        """
        Unified command runner with consistent error handling and dry-run support.

        Read-only queries (mutates=False) still execute in dry-run mode so
        decisions downstream are made on real data.

        Args:
            cmd: Command list to execute
            cwd: Working directory for command
            capture_output: Whether to capture stdout/stderr
            check: Raise error_class on non-zero exit
            mutates: Whether the command changes any state
            context: ProjectContext attached to raised errors

        Returns:
            CompletedProcess: Result of command execution
        """
        cmd = [str(part) for part in cmd]
        if self.dry_run and mutates:
            print(f"[DRY RUN] Would run: {format_command(cmd)}")
            if cwd:
                print(f"[DRY RUN] In directory: {cwd}")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        if not capture_output:
            print(f"{Fore.GREEN}$ {format_command(cmd)}{Style.RESET_ALL}")
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=capture_output, text=True,
                                    errors='replace', env=run_env)
        except FileNotFoundError:
            raise MissingToolError(f"missing required command: {cmd[0]}", context=context, command=cmd)
        if check and result.returncode != 0:
            detail = ""
            if capture_output:
                detail = (result.stderr or result.stdout or "").strip()
            message = f"command exited with status {result.returncode}"
            if detail:
                message += f": {detail}"
            raise error_class(message, context=context, command=cmd, exit_code=result.returncode)
        return result

    def format_dry_run(self, action, details=None):
        """Format dry-run output consistently"""
        if self.dry_run:
            print(f"[DRY RUN] {action}")
            if details:
                for detail in details:
                    print(f"[DRY RUN]   {detail}")

    def cleanup_old_logs(self, package_name, keep_count=None):
        """
        Keep only the most recent N log files for a package.

        Args:
            package_name: Name of package to clean logs for
            keep_count: Number of recent logs to keep (default: LOG_RETENTION_COUNT)
        """
        if keep_count is None:
            keep_count = LOG_RETENTION_COUNT

        if not self.logs_dir.exists():
            return

        log_files = list(self.logs_dir.glob(f"{package_name}-*-build.log"))
        log_files.sort(key=lambda f: f.stat().st_mtime, reverse=True)

        for old_log in log_files[keep_count:]:
            old_log.unlink()


def warn(message):
    print(f"{Fore.YELLOW}Warning: {message}{Style.RESET_ALL}", file=sys.stderr)


def error(message):
    print(f"{Fore.RED}ERROR: {message}{Style.RESET_ALL}", file=sys.stderr)
