#!/usr/bin/env python3
"""
Test Suite for the Debian Package Repository Builder

Drives the per-project pipeline end to end with the external tools
replaced by in-memory fakes, and exercises the companion scripts
(index generation, upload, repository init and database reset).
"""

import os
import subprocess
import sys
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest
from debian import deb822

import build_repo
from build_repo import BuildSettings, RepoBuilder, find_changes, read_changes_architectures
from build_tree import BuildTree
from gen_index import collect_rows, render_index, write_index
from git_source import FetchResult
from repo_db_reset import erase_db, erase_references
from repo_init import init_repository, render_distributions
from reprepro import ChecksumConflict, Distribution, IncludeFailure, IncludeSuccess, parse_distributions
from upload_repo import Publisher
from utils import (
    DEBUILD_CMD_OPTS, CommandError, DirtyTreeError, EnvironmentSetupError, IncludeError,
    MissingToolError, NoArtifactsError, PackageIdentity, PipelineError, ProjectEntry
)

ROOT = Path(__file__).resolve().parent
CONFLICT_OUTPUT = ('ERROR: File "pool/main/h/hello/hello_1.0.orig.tar.gz" is already registered '
                   'with different checksums!')


# =============================================================================
# FAKES - in-memory stand-ins for reprepro and debuild
# =============================================================================

class FakeRepo:
    """Remembers included (source, version, architecture) triples like reprepro's database"""

    def __init__(self, repo_dir):
        self.repo_dir = Path(repo_dir)
        self.entries = set()
        self.pool = set()
        self.queued_results = []
        self.include_calls = []
        self.removed = []
        self.deleted = 0
        self.exported = []

    def require_initialized(self):
        pass

    def sign_with(self, codename=None):
        return ""

    def source_version_architectures(self, codename, source, version, context=None):
        return {arch for (s, v, arch) in self.entries if s == source and v == version}

    def has_pool_file(self, source, filename):
        return filename in self.pool

    def include(self, codename, changes_file, context=None):
        self.include_calls.append(Path(changes_file))
        if self.queued_results:
            return self.queued_results.pop(0)
        fields = deb822.Changes(Path(changes_file).read_text())
        for arch in fields["Architecture"].split():
            self.entries.add((fields["Source"], fields["Version"], arch))
        return IncludeSuccess()

    def remove_source_version(self, codename, source, version, architectures, context=None):
        self.removed.append((codename, source, version, list(architectures)))

    def delete_unreferenced(self, context=None):
        self.deleted += 1

    def export(self, codename, context=None):
        self.exported.append(codename)


class FakeBuilder:
    """Writes the .changes file debuild would have produced"""

    def __init__(self, source_only=False, archs="source amd64"):
        self.source_only = source_only
        self.archs = archs
        self.calls = []

    def build(self, name, build_tree, pkg_dir, identity, orig_in_pool, context=None):
        self.calls.append((name, Path(build_tree), orig_in_pool))
        changes = Path(pkg_dir) / f"{identity.source}_{identity.version_without_epoch}_amd64.changes"
        changes.write_text(f"Source: {identity.source}\nVersion: {identity.version}\nArchitecture: {self.archs}\n")
        return None


def write_changelog(work_dir, name, source="hello", version="1.0-1"):
    debian = Path(work_dir) / name / "src" / "debian"
    debian.mkdir(parents=True, exist_ok=True)
    (debian / "changelog").write_text(f"{source} ({version}) trixie; urgency=medium\n\n  * Release.\n")


@pytest.fixture(autouse=True)
def no_signal_handlers():
    with patch('build_repo.signal.signal'):
        yield


@pytest.fixture
def settings(tmp_path):
    list_file = tmp_path / "list.txt"
    list_file.write_text("1. https://example.org/hello.git\n")
    return BuildSettings(
        list_file=list_file,
        repo_dir=tmp_path / "repository",
        codename="trixie",
        work_dir=tmp_path / "work",
        host_arch="amd64",
        index_file=tmp_path / "index.html",
    )


def make_builder(settings, builder=None, repo=None, dry_run=False, cloned=False):
    fetcher = MagicMock()
    fetcher.fetch.return_value = FetchResult("main", "0123456789ab", cloned=cloned)
    fetcher.commit_timestamp.return_value = 1700000000
    preparer = MagicMock()
    preparer.prepare.side_effect = lambda src_dir, pkg_dir, identity, context=None: BuildTree(Path(src_dir))
    return RepoBuilder(settings, dry_run=dry_run, fetcher=fetcher, preparer=preparer,
                       repo=repo or FakeRepo(settings.repo_dir), builder=builder or FakeBuilder(),
                       orig_manager=MagicMock())


HELLO = ProjectEntry("https://example.org/hello.git", "hello")


# =============================================================================
# PIPELINE TESTS - clone, prepare, skip, orig, build, include
# =============================================================================

class TestPipeline:
    """End-to-end behaviour of one project through the pipeline"""

    def test_first_run_builds_and_includes(self, settings):
        """A version not yet in the repository is built and included"""
        write_changelog(settings.work_dir, "hello")
        rb = make_builder(settings)
        result = rb.process_project(HELLO)

        assert result.status == "built"
        assert result.version == "1.0-1"
        assert len(rb.builder.calls) == 1
        assert ("hello", "1.0-1", "amd64") in rb.repo.entries
        assert [p.name for p in result.included] == ["hello_1.0-1_amd64.changes"]

    def test_second_run_is_a_no_op(self, settings):
        """Re-running with unchanged sources builds and includes nothing"""
        write_changelog(settings.work_dir, "hello")
        rb = make_builder(settings)
        rb.process_project(HELLO)
        result = rb.process_project(HELLO)

        assert result.status == "skipped"
        assert len(rb.builder.calls) == 1
        assert len(rb.repo.include_calls) == 1

    def test_force_rebuild_ignores_skip(self, settings):
        write_changelog(settings.work_dir, "hello")
        repo = FakeRepo(settings.repo_dir)
        repo.entries.add(("hello", "1.0-1", "amd64"))
        settings.force_rebuild = True
        rb = make_builder(settings, repo=repo)
        assert rb.process_project(HELLO).status == "built"

    def test_source_only_skip_looks_for_source_entry(self, settings):
        write_changelog(settings.work_dir, "hello")
        repo = FakeRepo(settings.repo_dir)
        repo.entries.add(("hello", "1.0-1", "source"))
        rb = make_builder(settings, repo=repo, builder=FakeBuilder(source_only=True, archs="source"))
        assert rb.process_project(HELLO).status == "skipped"

    def test_other_architecture_does_not_skip(self, settings):
        """A version present only for arm64 still builds on an amd64 host"""
        write_changelog(settings.work_dir, "hello")
        repo = FakeRepo(settings.repo_dir)
        repo.entries.add(("hello", "1.0-1", "arm64"))
        rb = make_builder(settings, repo=repo)
        assert rb.process_project(HELLO).status == "built"

    def test_orig_in_pool_is_passed_to_build(self, settings):
        write_changelog(settings.work_dir, "hello")
        repo = FakeRepo(settings.repo_dir)
        repo.pool.add("hello_1.0.orig.tar.gz")
        rb = make_builder(settings, repo=repo)
        rb.process_project(HELLO)

        assert rb.builder.calls[0][2] is True
        ensure = rb.orig_manager.ensure
        ensure.assert_called_once()
        assert ensure.call_args[1]["mtime"] == 1700000000

    def test_orig_tarball_gets_tracked_files(self, settings):
        """Only files git tracks are handed to the orig tarball step"""
        write_changelog(settings.work_dir, "hello")
        rb = make_builder(settings)
        rb.fetcher.tracked_files.return_value = ["README", "src/hello.c"]
        rb.process_project(HELLO)

        rb.fetcher.tracked_files.assert_called_once()
        assert rb.orig_manager.ensure.call_args[1]["tracked"] == ["README", "src/hello.c"]


    def test_dry_run_fresh_clone_stops_early(self, settings):
        rb = make_builder(settings, dry_run=True, cloned=True)
        assert rb.process_project(HELLO).status == "dry-run"
        assert rb.builder.calls == []

    def test_epoch_is_dropped_from_changes_name(self, settings):
        write_changelog(settings.work_dir, "hello", version="2:1.0-1")
        rb = make_builder(settings)
        result = rb.process_project(HELLO)
        assert [p.name for p in result.included] == ["hello_1.0-1_amd64.changes"]

    def test_failure_reports_project_and_step(self, settings):
        rb = make_builder(settings)
        rb.fetcher.fetch.side_effect = DirtyTreeError("working tree not clean")
        with pytest.raises(DirtyTreeError) as excinfo:
            rb.process_project(HELLO)
        ctx = excinfo.value.context
        assert (ctx.name, ctx.url, ctx.step) == ("hello", "https://example.org/hello.git", "clone/update")

    def test_os_error_becomes_pipeline_error(self, settings):
        write_changelog(settings.work_dir, "hello")
        rb = make_builder(settings)
        rb.orig_manager.ensure.side_effect = PermissionError("read-only file system")
        with pytest.raises(PipelineError) as excinfo:
            rb.process_project(HELLO)
        assert excinfo.value.context.step == "orig tarball"
        assert rb.builder.calls == []


class TestIncludeConflicts:
    """Checksum conflict handling during reprepro include"""

    def test_conflict_with_force_removes_and_retries_once(self, settings):
        write_changelog(settings.work_dir, "hello")
        settings.force_rebuild = True
        repo = FakeRepo(settings.repo_dir)
        repo.queued_results = [ChecksumConflict(CONFLICT_OUTPUT), IncludeSuccess()]
        rb = make_builder(settings, repo=repo)

        assert rb.process_project(HELLO).status == "built"
        assert len(repo.include_calls) == 2
        assert repo.removed == [("trixie", "hello", "1.0-1", ["amd64"])]
        assert repo.deleted == 1

    def test_second_conflict_is_fatal(self, settings):
        write_changelog(settings.work_dir, "hello")
        settings.force_rebuild = True
        repo = FakeRepo(settings.repo_dir)
        repo.queued_results = [ChecksumConflict(CONFLICT_OUTPUT), ChecksumConflict(CONFLICT_OUTPUT)]
        rb = make_builder(settings, repo=repo)

        with pytest.raises(IncludeError) as excinfo:
            rb.process_project(HELLO)
        assert len(repo.include_calls) == 2
        assert excinfo.value.context.step == "reprepro include"
        assert "already registered with different checksums" in excinfo.value.message

    def test_conflict_without_force_is_fatal(self, settings):
        write_changelog(settings.work_dir, "hello")
        repo = FakeRepo(settings.repo_dir)
        repo.queued_results = [ChecksumConflict(CONFLICT_OUTPUT)]
        rb = make_builder(settings, repo=repo)

        with pytest.raises(IncludeError):
            rb.process_project(HELLO)
        assert len(repo.include_calls) == 1
        assert repo.removed == []

    def test_other_include_failure_is_reported_verbatim(self, settings):
        write_changelog(settings.work_dir, "hello")
        repo = FakeRepo(settings.repo_dir)
        repo.queued_results = [IncludeFailure("Cannot find definition of distribution 'trixie'!", 255)]
        rb = make_builder(settings, repo=repo)

        with pytest.raises(IncludeError, match="Cannot find definition of distribution"):
            rb.process_project(HELLO)

    def test_missing_changes_is_fatal(self, settings, tmp_path):
        rb = make_builder(settings)
        with pytest.raises(NoArtifactsError):
            rb.include_changes(tmp_path, PackageIdentity("hello", "1.0-1"), None)


class TestChangesDiscovery:
    """Selecting the .changes files that belong to the current build"""

    def test_only_files_newer_than_stamp(self, tmp_path):
        old = tmp_path / "hello_1.0-1_amd64.changes"
        new = tmp_path / "hello_1.0-1_source.changes"
        stamp = tmp_path / ".build-stamp.abc"
        for path in (old, new, stamp):
            path.write_text("Architecture: amd64\n")
        base = stamp.stat().st_mtime
        os.utime(old, (base - 100, base - 100))
        os.utime(new, (base + 100, base + 100))

        assert find_changes(tmp_path, PackageIdentity("hello", "1.0-1"), stamp) == [new]
        assert len(find_changes(tmp_path, PackageIdentity("hello", "1.0-1"))) == 2

    def test_other_versions_are_ignored(self, tmp_path):
        (tmp_path / "hello_0.9-1_amd64.changes").write_text("")
        assert find_changes(tmp_path, PackageIdentity("hello", "1.0-1")) == []

    def test_read_architectures(self, tmp_path):
        changes = tmp_path / "x.changes"
        changes.write_text("Format: 1.8\nSource: hello\nArchitecture: source amd64 all\n")
        assert read_changes_architectures(changes) == ["source", "amd64", "all"]

    def test_read_architectures_is_case_insensitive(self, tmp_path):
        changes = tmp_path / "x.changes"
        changes.write_text("Format: 1.8\nSource: hello\narchitecture: source arm64\nVersion: 1.0-1\n")
        assert read_changes_architectures(changes) == ["source", "arm64"]

    def test_read_architectures_missing_field(self, tmp_path):
        changes = tmp_path / "x.changes"
        changes.write_text("Format: 1.8\nSource: hello\n")
        assert read_changes_architectures(changes) == []



class TestRun:
    """Whole-run behaviour: environment checks, filtering, export and index"""

    def test_run_exports_and_writes_index(self, settings):
        write_changelog(settings.work_dir, "hello")
        rb = make_builder(settings)
        with patch('build_repo.need_cmd'), patch('build_repo.write_index') as index:
            results = rb.run()
        assert [r.status for r in results] == ["built"]
        assert rb.repo.exported == ["trixie"]
        index.assert_called_once_with(rb.repo, settings.index_file, dry_run=False)

    def test_name_filters_are_case_insensitive(self, settings):
        settings.list_file.write_text(
            "1. https://example.org/hello.git\n"
            "2. https://example.org/other.git\n"
        )
        write_changelog(settings.work_dir, "hello")
        rb = make_builder(settings)
        with patch('build_repo.need_cmd'), patch('build_repo.write_index'):
            results = rb.run(["HELLO"])
        assert [r.name for r in results] == ["hello"]

    def test_failure_aborts_before_export(self, settings):
        rb = make_builder(settings)
        rb.fetcher.fetch.side_effect = DirtyTreeError("working tree not clean")
        with patch('build_repo.need_cmd'), patch('build_repo.write_index') as index:
            with pytest.raises(DirtyTreeError):
                rb.run()
        assert rb.repo.exported == []
        index.assert_not_called()

    def test_missing_tool_is_fatal_before_any_project(self, settings):
        rb = make_builder(settings)
        with patch('utils.shutil.which', return_value=None):
            with pytest.raises(MissingToolError) as excinfo:
                rb.run()
        assert excinfo.value.exit_code == 127
        rb.fetcher.fetch.assert_not_called()

    def test_missing_list_file(self, settings):
        settings.list_file.unlink()
        rb = make_builder(settings)
        with patch('build_repo.need_cmd'):
            with pytest.raises(EnvironmentSetupError, match="list file not found"):
                rb.run()

    def test_main_exits_with_error_code(self, capsys):
        with patch('build_repo.RepoBuilder') as builder_cls:
            builder_cls.return_value.run.side_effect = MissingToolError("missing required command: debuild")
            with pytest.raises(SystemExit) as excinfo:
                build_repo.main([])
        assert excinfo.value.code == 127
        assert "missing required command: debuild" in capsys.readouterr().err


class TestSettings:
    """Environment configuration of a build run"""

    def test_from_environment(self, tmp_path):
        settings = BuildSettings.from_environment({
            "LIST_FILE": str(tmp_path / "projects.txt"),
            "REPO_DIR": "repo",
            "CODENAME": "bookworm",
            "FORCE_ORIG": "1",
            "FORCE_REBUILD": "0",
            "DEBUILD_OPTS": "-S -d",
            "DEBUILD_CMD_OPTS": "--no-lintian --preserve-envvar=PATH",
        })
        assert settings.list_file == tmp_path / "projects.txt"
        assert settings.repo_dir == ROOT / "repo"
        assert settings.codename == "bookworm"
        assert settings.force_orig and not settings.force_rebuild
        assert settings.dpkg_buildpackage_opts == ("-S", "-d")
        assert settings.debuild_cmd_opts == ("--no-lintian", "--preserve-envvar=PATH")

    def test_dpkg_buildpackage_opts_win_over_alias(self):
        settings = BuildSettings.from_environment({"DPKG_BUILDPACKAGE_OPTS": "-b", "DEBUILD_OPTS": "-S"})
        assert settings.dpkg_buildpackage_opts == ("-b",)

    def test_empty_debuild_cmd_opts_use_default(self):
        settings = BuildSettings.from_environment({"DEBUILD_CMD_OPTS": ""})
        assert settings.debuild_cmd_opts == tuple(DEBUILD_CMD_OPTS.split())
        assert "--no-lintian" in settings.debuild_cmd_opts


    def test_prime_passphrase(self, settings, tmp_path):
        passphrase = tmp_path / "pass"
        passphrase.write_text("secret\n")
        settings.gpg_passphrase_file = str(passphrase)
        repo = FakeRepo(settings.repo_dir)
        repo.sign_with = lambda codename=None: "ABCD1234"
        rb = make_builder(settings, repo=repo)
        with patch.object(rb, 'run_command', return_value=subprocess.CompletedProcess([], 0, "", "")) as run:
            assert rb.prime_passphrase()
        cmd = run.call_args[0][0]
        assert cmd[:5] == ["gpg", "--batch", "--yes", "--pinentry-mode", "loopback"]
        assert "ABCD1234" in cmd

    def test_prime_passphrase_failure_only_warns(self, settings, tmp_path, capsys):
        passphrase = tmp_path / "pass"
        passphrase.write_text("wrong\n")
        settings.gpg_passphrase_file = str(passphrase)
        repo = FakeRepo(settings.repo_dir)
        repo.sign_with = lambda codename=None: "ABCD1234"
        rb = make_builder(settings, repo=repo)
        with patch.object(rb, 'run_command', return_value=subprocess.CompletedProcess([], 2, "", "bad passphrase")):
            assert not rb.prime_passphrase()
        assert "bad passphrase" in capsys.readouterr().err


# =============================================================================
# INDEX TESTS - HTML page generation
# =============================================================================

class FakeIndexRepo:
    def __init__(self, listings):
        self.listings = listings

    def distributions(self):
        return [Distribution("trixie", "stable", ["main"], ["amd64", "source"]), Distribution("bookworm")]

    def list_packages(self, codename):
        if isinstance(self.listings[codename], Exception):
            raise self.listings[codename]
        return self.listings[codename]


class TestIndex:
    """Index page generation"""

    def test_collect_rows_drops_source_and_duplicates(self):
        rows = collect_rows([
            "trixie|main|amd64: hello 1.0-1",
            "trixie|main|source: hello 1.0-1",
            "trixie|main|amd64: hello 1.0-1",
            "bookworm|main|arm64: csdr 0.18",
            "",
        ])
        assert rows == ["bookworm|main|arm64: csdr 0.18", "trixie|main|amd64: hello 1.0-1"]

    def test_render_escapes_values(self):
        page = render_index(["trixie|main|amd64: <evil> 1&2"], repo_url="http://example.org/a?b&c",
                            key_file="key.asc", suite="stable", components="main")
        assert "<br />trixie|main|amd64: &lt;evil&gt; 1&amp;2" in page
        assert 'href="http://example.org/a?b&amp;c"' in page
        assert "<evil>" not in page

    def test_render_install_instructions(self):
        page = render_index([], repo_url="http://packages.example.org/hermes/", key_file="repo.key",
                            suite="trixie", components="main")
        assert "wget http://packages.example.org/hermes/repo.key<br />" in page
        assert "apt-key add repo.key<br />" in page
        assert "echo deb http://packages.example.org/hermes/ trixie main &gt;&gt; /etc/apt/sources.list" in page

    def test_write_index_survives_failed_codename(self, tmp_path, capsys):
        repo = FakeIndexRepo({
            "trixie": ["trixie|main|amd64: hello 1.0-1", "trixie|main|source: hello 1.0-1"],
            "bookworm": CommandError("command exited with status 255"),
        })
        out = tmp_path / "index.html"
        count = write_index(repo, out, repo_url="http://example.org/", key_file="k.key")
        assert count == 1
        page = out.read_text()
        assert "<br />trixie|main|amd64: hello 1.0-1" in page
        assert "echo deb http://example.org/ stable main" in page
        assert "could not list bookworm" in capsys.readouterr().err

    def test_write_index_dry_run(self, tmp_path):
        repo = FakeIndexRepo({"trixie": [], "bookworm": []})
        write_index(repo, tmp_path / "index.html", dry_run=True)
        assert not (tmp_path / "index.html").exists()


# =============================================================================
# PUBLISHING TESTS - rsync upload
# =============================================================================

class TestPublisher:
    """rsync upload of the repository and the index page"""

    def test_commands(self, tmp_path):
        publisher = Publisher(tmp_path / "repository", tmp_path / "index.html", rsync_dry_run=True, delete=True)
        commands = publisher.commands("user@host:/var/www/html/", "hermes")
        assert commands == [
            ["rsync", "-avz", "--dry-run", "--delete", f"{tmp_path / 'repository'}/", "user@host:/var/www/html/hermes/"],
            ["rsync", "-avz", "--dry-run", "--delete", str(tmp_path / "index.html"), "user@host:/var/www/html/index.html"],
        ]

    def test_publish_runs_both_transfers(self, tmp_path):
        (tmp_path / "repository").mkdir()
        (tmp_path / "index.html").write_text("<html></html>\n")
        publisher = Publisher(tmp_path / "repository", tmp_path / "index.html")
        with patch('upload_repo.need_cmd'), patch.object(publisher, 'run_command') as run:
            publisher.publish("user@host:/srv")
        assert run.call_count == 2

    def test_missing_index_is_an_error(self, tmp_path):
        (tmp_path / "repository").mkdir()
        publisher = Publisher(tmp_path / "repository", tmp_path / "index.html")
        with patch('upload_repo.need_cmd'):
            with pytest.raises(EnvironmentSetupError, match="index.html not found"):
                publisher.publish("user@host:/srv")

    def test_missing_dest_exits_2(self):
        import upload_repo
        with pytest.raises(SystemExit) as excinfo:
            upload_repo.main([])
        assert excinfo.value.code == 2


# =============================================================================
# REPOSITORY MAINTENANCE TESTS - init and database reset
# =============================================================================

class TestRepoInit:
    """Creation of conf/distributions"""

    def test_unsigned_repository(self, tmp_path):
        target = init_repository(tmp_path / "repo", "trixie", "trixie", "main", "amd64 arm64 source", unsigned=True)
        assert target == tmp_path / "repo" / "conf" / "distributions"
        for sub in ("conf", "db", "dists", "pool"):
            assert (tmp_path / "repo" / sub).is_dir()
        dist = parse_distributions(target.read_text())[0]
        assert dist.codename == "trixie"
        assert dist.architectures == ["amd64", "arm64", "source"]
        assert dist.sign_with == ""

    def test_signing_key_required_unless_unsigned(self, tmp_path):
        with pytest.raises(EnvironmentSetupError, match="--sign-with"):
            init_repository(tmp_path, "trixie", "trixie", "main", "amd64")

    def test_unknown_key_only_warns(self, tmp_path, capsys):
        with patch('repo_init.secret_key_available', return_value=False):
            target = init_repository(tmp_path, "trixie", "trixie", "main", "amd64", sign_with="ABCD1234")
        assert parse_distributions(target.read_text())[0].sign_with == "ABCD1234"
        assert "not found" in capsys.readouterr().err

    def test_render_distributions(self):
        text = render_distributions("trixie", "stable", "main", "amd64 source")
        assert "AlsoAcceptFor:" in text
        assert "SignWith" not in text


class TestRepoDbReset:
    """Database erase helpers and command line"""

    def test_erase_db_keeps_backup(self, tmp_path):
        (tmp_path / "db").mkdir()
        (tmp_path / "db" / "packages.db").write_text("x")
        moved = erase_db(tmp_path, "20260101T000000Z")
        assert moved == tmp_path / "db.deleted.20260101T000000Z"
        assert (moved / "packages.db").is_file()
        assert (tmp_path / "db").is_dir()
        assert list((tmp_path / "db").iterdir()) == []

    def test_erase_db_without_backup(self, tmp_path):
        (tmp_path / "db").mkdir()
        assert erase_db(tmp_path, "ts", backup=False) is None
        assert [p.name for p in tmp_path.iterdir()] == ["db"]

    def test_erase_references(self, tmp_path):
        (tmp_path / "db").mkdir()
        (tmp_path / "db" / "references.db").write_text("x")
        moved = erase_references(tmp_path, "ts")
        assert moved.name == "references.db.deleted.ts"
        assert not (tmp_path / "db" / "references.db").exists()

    def test_main_without_arguments_shows_help(self):
        import repo_db_reset
        with pytest.raises(SystemExit) as excinfo:
            repo_db_reset.main([])
        assert excinfo.value.code == 2

    def test_main_missing_repository(self, tmp_path):
        import repo_db_reset
        with pytest.raises(SystemExit) as excinfo:
            repo_db_reset.main(["--repo-dir", str(tmp_path / "nope"), "--erase-db"])
        assert excinfo.value.code == 1


# =============================================================================
# INTEGRATION TESTS - command line entry points
# =============================================================================

class TestCommandLineInterface:
    """Every script answers --help"""

    @pytest.mark.parametrize("script", [
        "build_repo.py", "gen_index.py", "upload_repo.py", "repo_init.py", "repo_db_reset.py",
    ])
    def test_scripts_show_help(self, script):
        result = subprocess.run([sys.executable, script, "--help"], cwd=ROOT,
                                capture_output=True, text=True)
        assert result.returncode == 0, result.stderr
        assert "usage:" in result.stdout
