#!/usr/bin/env python3
"""
Generate index.html for the repository from reprepro list output.

Lists every binary package of every configured codename as
codename|component|architecture: package version, de-duplicated and
sorted, together with install instructions.

Environment:
  REPO_URL      URL shown on the page (default from config.ini)
  KEY_FILE      Key file name (default from config.ini)
"""

import argparse
import html
import os
import sys
from pathlib import Path

from reprepro import Reprepro
from utils import (
    REPO_DIR, ROOT_DIR, PipelineError, config, resolve_path, warn
)

REPO_URL = config.get('index', 'repo_url', fallback='http://packages.hermes.radio/hermes/')
KEY_FILE = config.get('index', 'key_file', fallback='rafael.key')
TITLE = config.get('index', 'title', fallback="Rhizomatica's HERMES repository")
HEADING = config.get('index', 'heading', fallback='HERMES DEBIAN PACKAGE REPOSITORY')

SOURCE_MARKER = '|source:'


def collect_rows(listings):
    """
    Merge listing lines of all codenames into the rows shown on the page.

    Source entries are dropped, duplicates removed and the result sorted.
    """
    rows = set()
    for line in listings:
        line = line.strip()
        if not line or SOURCE_MARKER in line:
            continue
        rows.add(line)
    return sorted(rows)


def render_index(rows, repo_url=REPO_URL, key_file=KEY_FILE, suite="trixie", components="main",
                 codename=None, title=TITLE, heading=HEADING):
    """Render the static page; every interpolated value is HTML-escaped"""
    e = html.escape
    key_url = f"{repo_url.rstrip('/')}/{key_file}"
    release = codename or suite
    lines = [
        "<html>",
        "  <head>",
        f"  <title>{e(title)}</title>",
        "  </head>",
        "  <body>",
        f'    {e(heading)}: <a href="{e(repo_url, quote=True)}">{e(repo_url)}</a><br /> <br/>',
        f"    Instructions (Debian {e(release)}):<br /> <br />",
        f"    wget {e(key_url)}<br />",
        f"    apt-key add {e(key_file)}<br />",
        f"    echo deb {e(repo_url)} {e(suite)} {e(components)} &gt;&gt; /etc/apt/sources.list<br />",
        "    apt-get update<br />",
        "    <br />",
        "    <br />",
        "    Available packages:<br />",
    ]
    lines.extend(f"<br />{e(row)}" for row in rows)
    lines += [
        "",
        "  </body>",
        "  </html>",
    ]
    return "\n".join(lines) + "\n"


def write_index(repo, out_file, repo_url=None, key_file=None, dry_run=False):
    """
    Query every codename of repo and write the index page.

    A codename whose listing fails is reported and left out; the page is
    still written for the others.

    Returns:
        int: number of package rows written
    """
    repo_url = repo_url or os.environ.get('REPO_URL') or REPO_URL
    key_file = key_file or os.environ.get('KEY_FILE') or KEY_FILE

    dists = repo.distributions()
    codenames = [d.codename for d in dists]
    first = dists[0] if dists else None
    components = " ".join(first.components) if first and first.components else "main"
    suite = (first.suite if first else "") or (codenames[0] if codenames else "trixie")

    listings = []
    for codename in codenames:
        try:
            listings.extend(repo.list_packages(codename))
        except PipelineError as e:
            warn(f"could not list {codename}: {e.message}")

    rows = collect_rows(listings)
    page = render_index(rows, repo_url=repo_url, key_file=key_file, suite=suite, components=components,
                        codename=codenames[0] if codenames else None)
    if dry_run:
        print(f"[DRY RUN] Would write {out_file} ({len(rows)} packages)")
        return len(rows)
    Path(out_file).write_text(page)
    print(f"Wrote: {out_file}")
    return len(rows)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Generate index.html from reprepro list output',
        epilog="Environment:" + __doc__.split("Environment:", 1)[1],
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--repo-dir', default=os.environ.get('REPO_DIR') or REPO_DIR,
                        help='reprepro base dir (default: ./repository)')
    parser.add_argument('--out', default=str(ROOT_DIR / 'index.html'),
                        help='output file (default: ./index.html)')
    args = parser.parse_args(argv)

    repo = Reprepro(resolve_path(args.repo_dir))
    try:
        repo.require_initialized()
        write_index(repo, resolve_path(args.out))
    except PipelineError as e:
        print(e.format_report("gen_index.py"), file=sys.stderr)
        sys.exit(e.exit_code)
    return 0


if __name__ == "__main__":
    main()
