#!/usr/bin/env python3
"""
layerctl - Layered Settings CLI

Resolve, secure, sign and verify a set of layered settings files.

Commands:
    files           List resolved settings files, least to most specific
    show            Print the merged settings
    secure          Encrypt values that should be secure, in place
    sign            Write detached signatures for the settings files
    verify          Check the settings files against their signatures
    keygen          Generate key material

Usage:
    layerctl files -n production
    layerctl show -n production --decryption-key keys/settings.key
    layerctl show --insecure --format env
    layerctl secure --encryption-key keys/settings.key --pattern 'password|token'
    layerctl sign --signing-key keys/signing.key
    layerctl verify --verify-key keys/signing.key.pub
    layerctl keygen fernet --output keys/settings.key

Without --file, settings.yml and the settings/ directory under --basepath
are used.

Exit codes:
    0   success
    1   a file failed to parse, or verify found a file that is not verified
    2   usage error
"""

import argparse
import json
import os
import shlex
import sys
from pathlib import Path
from typing import List, Optional

import yaml

from ..constants import Permissions
from ..crypto.cipher import CIPHERS, FernetCipher, SealedBoxCipher
from ..crypto.signer import FileSigner, SignatureStatus
from ..exceptions import LayerconfError
from ..file_set import FileSet
from ..logging_config import setup_logging

DEFAULT_PATTERNS = ['settings.yml', 'settings']


# ANSI colors
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    GRAY = '\033[90m'

    @classmethod
    def disable(cls):
        for attr in ['RESET', 'BOLD', 'RED', 'GREEN', 'YELLOW', 'GRAY']:
            setattr(cls, attr, '')


STATUS_COLORS = {
    SignatureStatus.VERIFIED: 'GREEN',
    SignatureStatus.MISMATCH: 'RED',
    SignatureStatus.MISSING_SIGNATURE: 'YELLOW',
}


# =============================================================================
# HELPERS
# =============================================================================

def read_key(path: str) -> str:
    """Key material stored in a file."""
    return Path(path).read_text(encoding='ascii').strip()


def write_key(path: Path, material: bytes) -> None:
    """Write key material readable only by the owner."""
    path.parent.mkdir(mode=Permissions.SECURE_DIR, parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, Permissions.SECURE_FILE)
    with os.fdopen(fd, 'wb') as f:
        f.write(material + b"\n")
    os.chmod(path, Permissions.SECURE_FILE)


def build_signer(args) -> Optional[FileSigner]:
    signing_key = read_key(args.signing_key) if args.signing_key else None
    verify_key = read_key(args.verify_key) if args.verify_key else None
    if signing_key is None and verify_key is None:
        return None
    return FileSigner(signing_key=signing_key, verify_key=verify_key)


def build_file_set(args) -> FileSet:
    return FileSet(
        files=args.file or DEFAULT_PATTERNS,
        basepath=args.basepath,
        namespaces=args.namespace or [],
        decryption_keys=[read_key(p) for p in args.decryption_key or []],
        encryption_keys=[read_key(p) for p in args.encryption_key or []],
        cipher_name=args.cipher,
        signer=build_signer(args),
    )


def report_errors(file_set: FileSet) -> int:
    """Print per-file parse failures; returns the exit status they imply."""
    for path, error in file_set.errors.items():
        print(f"{Colors.RED}error{Colors.RESET}: {file_set.relative_path(path)}: {error}", file=sys.stderr)
    return 1 if file_set.errors else 0


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_files(args):
    """List resolved settings files."""
    file_set = build_file_set(args)
    for source in file_set.files:
        print(file_set.relative_path(source))
    return 0


def cmd_show(args):
    """Print the merged settings."""
    file_set = build_file_set(args)
    tree = file_set.to_settings_tree()

    if args.secure:
        tree = tree.secure_view()
    elif args.insecure:
        tree = tree.insecure_view()

    if args.format == 'json':
        print(json.dumps(tree.to_dict(), indent=2, default=str))
    elif args.format == 'env':
        for name, value in tree.to_environment().items():
            print(f"{name}={shlex.quote(value)}")
    else:
        if len(tree):
            print(yaml.safe_dump(tree.to_dict(), default_flow_style=False, sort_keys=False), end='')

    for warning in tree.warnings:
        print(
            f"{Colors.YELLOW}warning{Colors.RESET}: {'.'.join(warning.key_path)} "
            f"left encrypted ({warning.reason})",
            file=sys.stderr,
        )

    return report_errors(file_set)


def cmd_secure(args):
    """Encrypt values that should be secure."""
    file_set = build_file_set(args)
    key_paths = [tuple(k.split('.')) for k in args.key or []]
    reports = file_set.secure_all(key_paths=key_paths, patterns=args.pattern or [])

    for relative, report in reports.items():
        if report.secured:
            print(f"{Colors.GREEN}secured{Colors.RESET} {relative}: "
                  f"{', '.join('.'.join(p) for p in report.secured)}")
        for target in report.unmatched:
            print(f"{Colors.YELLOW}skipped{Colors.RESET} {relative}: "
                  f"{'.'.join(target.key_path)} ({target.reason})")

    if not any(report.secured for report in reports.values()):
        print(f"{Colors.GRAY}Nothing to secure{Colors.RESET}")

    return report_errors(file_set)


def cmd_sign(args):
    """Sign the settings files."""
    if not args.signing_key:
        print("sign requires --signing-key", file=sys.stderr)
        return 2

    file_set = build_file_set(args)
    for relative, sig_path in file_set.sign_all().items():
        print(f"{Colors.GREEN}signed{Colors.RESET} {relative} -> {file_set.relative_path(sig_path)}")
    return 0


def cmd_verify(args):
    """Verify the settings files."""
    if not (args.verify_key or args.signing_key):
        print("verify requires --verify-key or --signing-key", file=sys.stderr)
        return 2

    file_set = build_file_set(args)
    results = file_set.verify_all()

    if args.json:
        print(json.dumps({path: result.to_dict() for path, result in results.items()}, indent=2))
    else:
        for relative, result in results.items():
            color = getattr(Colors, STATUS_COLORS[result.status])
            print(f"{color}{result.status.value:18}{Colors.RESET} {relative}")

    return 0 if all(result.is_valid for result in results.values()) else 1


def cmd_keygen(args):
    """Generate key material."""
    if args.kind == 'fernet':
        files = [('key', FernetCipher.generate_key())]
    elif args.kind == 'sealed':
        private, public = SealedBoxCipher.generate_keypair()
        files = [('key', private), ('pub', public)]
    else:
        signing, verify = FileSigner.generate_keypair()
        files = [('key', signing), ('pub', verify)]

    if not args.output:
        for label, material in files:
            print(f"{label}: {material.decode('ascii')}")
        return 0

    output = Path(args.output)
    for label, material in files:
        path = output if label == 'key' else output.with_name(output.name + '.pub')
        write_key(path, material)
        print(f"Wrote {path}")
    return 0


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='layerctl',
        description='Layered Settings CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument('--json-logs', action='store_true', help='Log as JSON lines')
    parser.add_argument('--no-color', action='store_true', help='Disable colors')

    # Options shared by every command that resolves a file set
    resolution = argparse.ArgumentParser(add_help=False)
    resolution.add_argument('--basepath', '-b', default=None, help='Base directory (default: cwd)')
    resolution.add_argument('--file', '-f', action='append', help='File, glob or directory (repeatable)')
    resolution.add_argument('--namespace', '-n', action='append', help='Namespace, least specific first (repeatable)')
    resolution.add_argument('--decryption-key', action='append', help='Decryption key file (repeatable)')
    resolution.add_argument('--encryption-key', action='append', help='Encryption key file')
    resolution.add_argument('--cipher', choices=sorted(CIPHERS), default=FernetCipher.name, help='Value cipher')
    resolution.add_argument('--signing-key', help='Ed25519 signing key file')
    resolution.add_argument('--verify-key', help='Ed25519 verify key file')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # files
    files_parser = subparsers.add_parser('files', parents=[resolution], help='List resolved settings files')
    files_parser.set_defaults(func=cmd_files)

    # show
    show_parser = subparsers.add_parser('show', parents=[resolution], help='Print the merged settings')
    view = show_parser.add_mutually_exclusive_group()
    view.add_argument('--secure', action='store_true', help='Only secure values')
    view.add_argument('--insecure', action='store_true', help='Only non-secure values')
    show_parser.add_argument('--format', choices=['yaml', 'json', 'env'], default='yaml')
    show_parser.set_defaults(func=cmd_show)

    # secure
    secure_parser = subparsers.add_parser('secure', parents=[resolution], help='Encrypt values in place')
    secure_parser.add_argument('--key', '-k', action='append', help='Dotted key path to secure (repeatable)')
    secure_parser.add_argument('--pattern', '-p', action='append', help='Regex over key names (repeatable)')
    secure_parser.set_defaults(func=cmd_secure)

    # sign
    sign_parser = subparsers.add_parser('sign', parents=[resolution], help='Sign the settings files')
    sign_parser.set_defaults(func=cmd_sign)

    # verify
    verify_parser = subparsers.add_parser('verify', parents=[resolution], help='Verify signatures')
    verify_parser.add_argument('--json', action='store_true', help='JSON output')
    verify_parser.set_defaults(func=cmd_verify)

    # keygen
    keygen_parser = subparsers.add_parser('keygen', help='Generate key material')
    keygen_parser.add_argument('kind', choices=['fernet', 'sealed', 'signing'])
    keygen_parser.add_argument('--output', '-o', help=f'Key file (public half gets .pub; mode {oct(Permissions.SECURE_FILE)})')
    keygen_parser.set_defaults(func=cmd_keygen)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color or not sys.stdout.isatty():
        Colors.disable()

    setup_logging(verbose=args.verbose, json_format=args.json_logs)

    if not args.command:
        parser.print_help()
        return 0

    try:
        result = args.func(args)
    except (LayerconfError, OSError) as e:
        print(f"{Colors.RED}error{Colors.RESET}: {e}", file=sys.stderr)
        return 1

    return result if result else 0


if __name__ == "__main__":
    sys.exit(main())
