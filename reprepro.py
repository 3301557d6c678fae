#!/usr/bin/env python3
"""
Adapter around the reprepro command line tool.

All parsing of reprepro configuration and output lives here so the rest
of the pipeline works with plain Python values:

- conf/distributions is read into Distribution records
- include attempts are classified into IncludeSuccess, ChecksumConflict
  or IncludeFailure
- listings are returned as lists of strings or sets of architectures

The on-disk database and pool are never edited directly.
"""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from debian import deb822

from utils import BuildUtils, DISTRIBUTIONS_FILE, EnvironmentSetupError, PipelineError

CHECKSUM_CONFLICT_MARKER = "already registered with different checksums"

INDEX_LIST_FORMAT = '${$codename}|${$component}|${$architecture}: ${package} ${version}\\n'


@dataclass
class Distribution:
    codename: str
    suite: str = ""
    components: list = field(default_factory=list)
    architectures: list = field(default_factory=list)
    sign_with: str = ""
    fields: dict = field(default_factory=dict)


def parse_distributions(text):
    """
    Parse a reprepro conf/distributions file.

    Field names are matched case-insensitively; '#' lines are comments.

    Returns:
        list: Distribution records in file order (stanzas without Codename dropped)
    """
    lines = [line for line in text.splitlines() if not line.startswith('#')]
    distributions = []
    for stanza in deb822.Deb822.iter_paragraphs(lines, use_apt_pkg=False):
        codename = stanza.get('Codename', '').strip()
        if not codename:
            continue
        distributions.append(Distribution(
            codename=codename,
            suite=stanza.get('Suite', '').strip(),
            components=stanza.get('Components', '').split(),
            architectures=stanza.get('Architectures', '').split(),
            sign_with=stanza.get('SignWith', '').strip(),
            fields=dict(stanza),
        ))
    return distributions


def pool_prefix(source):
    """Debian pool directory prefix: lib* sources use four characters"""
    if source.startswith('lib') and len(source) > 3:
        return source[:4]
    return source[:1]


@dataclass
class IncludeSuccess:
    output: str = ""


@dataclass
class ChecksumConflict:
    output: str = ""


@dataclass
class IncludeFailure:
    output: str = ""
    returncode: int = 1


def classify_include(returncode, output):
    """Map a reprepro include exit status and output onto an IncludeResult"""
    if returncode == 0:
        return IncludeSuccess(output)
    if CHECKSUM_CONFLICT_MARKER in output:
        return ChecksumConflict(output)
    return IncludeFailure(output, returncode)


def source_version_filter(source, version):
    return f'$Source (== {source}), $SourceVersion (== {version})'


class Reprepro(BuildUtils):
    """Capability interface over one reprepro base directory"""

    def __init__(self, repo_dir, dry_run=False):
        super().__init__(dry_run)
        self.repo_dir = Path(repo_dir)

    @property
    def distributions_file(self):
        return self.repo_dir / DISTRIBUTIONS_FILE

    def is_initialized(self):
        return self.distributions_file.is_file()

    def require_initialized(self):
        if not self.is_initialized():
            raise EnvironmentSetupError(
                f"reprepro not initialized; missing: {self.distributions_file} "
                f"(run: repo_init.py ...)")

    def distributions(self):
        self.require_initialized()
        return parse_distributions(self.distributions_file.read_text())

    def codenames(self):
        return [d.codename for d in self.distributions()]

    def distribution(self, codename):
        for dist in self.distributions():
            if dist.codename == codename:
                return dist
        return None

    def main_component(self):
        """First component of the first distribution, 'main' if none is declared"""
        dists = self.distributions()
        if dists and dists[0].components:
            return dists[0].components[0]
        return "main"

    def sign_with(self, codename=None):
        dists = self.distributions()
        for dist in dists:
            if codename is None or dist.codename == codename:
                if dist.sign_with:
                    return dist.sign_with
        return ""

    def pool_path(self, source, filename, component=None):
        component = component or self.main_component()
        return self.repo_dir / "pool" / component / pool_prefix(source) / source / filename

    def has_pool_file(self, source, filename):
        return self.pool_path(source, filename).is_file()

    def _cmd(self, *args, ignores=()):
        cmd = ["reprepro", "-b", str(self.repo_dir)]
        for ignore in ignores:
            cmd.append(f"--ignore={ignore}")
        cmd.extend(args)
        return cmd

    def source_version_architectures(self, codename, source, version, context=None):
        """Architectures (including 'source') registered for exactly this source version"""
        cmd = self._cmd("--list-format", "${$architecture}\\n", "listfilter", codename,
                        source_version_filter(source, version))
        result = self.run_command(cmd, capture_output=True, mutates=False, context=context)
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    def list_packages(self, codename, list_format=INDEX_LIST_FORMAT):
        """Raw listing lines for one codename"""
        cmd = self._cmd("--list-format", list_format, "list", codename)
        result = self.run_command(cmd, capture_output=True, mutates=False)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def include(self, codename, changes_file, context=None):
        """Attempt to include one .changes file; never raises for reprepro's own refusals"""
        cmd = self._cmd("include", codename, str(changes_file), ignores=("wrongdistribution",))
        result = self.run_command(cmd, capture_output=True, check=False, context=context)
        output = "\n".join(part for part in (result.stdout, result.stderr) if part)
        if output:
            print(output.rstrip())
        return classify_include(result.returncode, output)

    def remove_source_version(self, codename, source, version, architectures, context=None):
        """Remove entries of one source version for the given architectures"""
        arch_opts = ["-A", "|".join(architectures)] if architectures else []
        cmd = self._cmd(*arch_opts, "removefilter", codename, source_version_filter(source, version))
        self.run_command(cmd, capture_output=True, context=context)

    def delete_unreferenced(self, context=None):
        self.run_command(self._cmd("deleteunreferenced"), capture_output=True, context=context)

    def export(self, codename, context=None):
        self.run_command(self._cmd("export", codename), context=context)

    def maintenance(self, action, context=None):
        """clearvanished/rereference with the tolerant ignore flags"""
        cmd = self._cmd(action, ignores=("unknownfield", "undefinedtarget"))
        return self.run_command(cmd, check=False, context=context)

    def detect_pool_files(self):
        """Feed every file under pool/ to reprepro _detect"""
        pool = self.repo_dir / "pool"
        paths = sorted(str(p.relative_to(self.repo_dir)) for p in pool.rglob('*') if p.is_file())
        if self.dry_run:
            self.format_dry_run(f"Would _detect {len(paths)} pool files")
            return
        result = subprocess.run(["reprepro", "-b", ".", "_detect"], cwd=self.repo_dir,
                                input="\n".join(paths) + "\n", text=True)
        if result.returncode != 0:
            raise PipelineError(f"reprepro _detect exited with status {result.returncode}",
                                command=["reprepro", "-b", ".", "_detect"], exit_code=result.returncode)
