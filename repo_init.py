#!/usr/bin/env python3
"""
Create a reprepro repository configuration.

Writes <repo-dir>/conf/distributions and the directory skeleton reprepro
expects. The signing key is created by the operator; pass --unsigned for
an unsigned repository.
"""

import argparse
import os
import shutil
import subprocess
import sys
from pathlib import Path

from utils import (
    CODENAME, DISTRIBUTIONS_FILE, REPO_DIR, EnvironmentSetupError, PipelineError,
    config, resolve_path, warn
)

REPO_SUBDIRS = ["conf", "db", "dists", "pool", "lists", "logs"]

DESCRIPTION = config.get('repository', 'description', fallback='HERMES extra packages')
ORIGIN = config.get('repository', 'origin', fallback='HERMES')
LABEL = config.get('repository', 'label', fallback='HERMES')
ALSO_ACCEPT_FOR = config.get('repository', 'also_accept_for', fallback='unstable stable UNRELEASED')


def render_distributions(codename, suite, components, architectures, sign_with=None,
                         description=DESCRIPTION, origin=ORIGIN, label=LABEL,
                         also_accept_for=ALSO_ACCEPT_FOR):
    """Text of a single-stanza conf/distributions"""
    lines = [
        f"Codename: {codename}",
        f"Suite: {suite}",
        f"Components: {components}",
        f"Architectures: {architectures}",
        f"Description: {description}",
        f"Origin: {origin}",
        f"Label: {label}",
        f"AlsoAcceptFor: {also_accept_for}",
        f"DDebComponents: {components}",
    ]
    if sign_with:
        lines.append(f"SignWith: {sign_with}")
    return "\n".join(lines) + "\n"


def secret_key_available(key_id):
    """True if gpg knows a secret key for key_id; None when gpg is not installed"""
    if shutil.which("gpg") is None:
        return None
    result = subprocess.run(["gpg", "--batch", "--list-secret-keys", key_id],
                            capture_output=True, text=True)
    return result.returncode == 0


def init_repository(repo_dir, codename, suite, components, architectures, sign_with=None, unsigned=False):
    """
    Create the repository skeleton and write conf/distributions.

    Raises:
        EnvironmentSetupError: neither a signing key nor unsigned mode was given
    """
    repo_dir = Path(repo_dir)
    if not unsigned and not sign_with:
        raise EnvironmentSetupError("provide --sign-with KEYID (you create the key) or use --unsigned")

    for sub in REPO_SUBDIRS:
        (repo_dir / sub).mkdir(parents=True, exist_ok=True)

    if not unsigned and secret_key_available(sign_with) is False:
        warn(f"gpg secret key '{sign_with}' not found (reprepro signing will fail until it's available)")

    target = repo_dir / DISTRIBUTIONS_FILE
    target.write_text(render_distributions(codename, suite, components, architectures,
                                           None if unsigned else sign_with))
    print(f"Initialized reprepro config at: {target}")
    return target


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create a reprepro repository')
    parser.add_argument('--repo-dir', default=os.environ.get('REPO_DIR') or REPO_DIR,
                        help='Repo directory (default: ./repository)')
    parser.add_argument('--codename', default=os.environ.get('CODENAME') or CODENAME,
                        help=f'Distribution codename (default: {CODENAME})')
    parser.add_argument('--suite', default=os.environ.get('SUITE') or config.get('repository', 'suite', fallback=CODENAME),
                        help='Suite name')
    parser.add_argument('--components', default=os.environ.get('COMPONENTS') or config.get('repository', 'components', fallback='main'),
                        help='Components (default: main)')
    parser.add_argument('--architectures', default=os.environ.get('ARCHS') or config.get('repository', 'architectures', fallback='amd64 arm64 source'),
                        help='Architectures (default: "amd64 arm64 source")')
    parser.add_argument('--sign-with', default=os.environ.get('SIGN_WITH') or None,
                        help='GPG key id/fingerprint for SignWith:')
    parser.add_argument('--unsigned', action='store_true',
                        help='Do not set SignWith: (unsigned repo)')
    args = parser.parse_args(argv)

    try:
        init_repository(resolve_path(args.repo_dir), args.codename, args.suite, args.components,
                        args.architectures, sign_with=args.sign_with, unsigned=args.unsigned)
    except PipelineError as e:
        print(e.format_report("repo_init.py"), file=sys.stderr)
        sys.exit(e.exit_code)
    return 0


if __name__ == "__main__":
    main()
