"""
Source File - one settings file on disk.

Reading a file runs it through template expansion, then the YAML decoder,
then SettingsTree.parse. Securing a file rewrites the values that should
be secure but are still plaintext into their encrypted, marked form,
touching nothing else in the file.

Usage:
    source = SourceFile('/app/settings/settings.yml',
                        namespaces=['production'],
                        decryption_keys=[key], encryption_keys=key)
    tree = source.parse()

    report = source.secure()        # encrypt pending secure values
    report.secured                  # [('database', 'password')]
"""

import os
import re
import stat
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple, Union

import yaml

from .constants import DEFAULT_CONVENTIONS, Conventions
from .crypto.cipher import Cipher, FernetCipher
from .crypto.signer import FileSigner, VerificationResult
from .document import DocumentDecoder, decode_yaml
from .exceptions import (
    AmbiguousOrUnmatchedSecureTarget,
    DecodeFailure,
    EncryptionUnavailable,
    SignatureUnavailable,
    TemplateFailure,
)
from .namespace_set import NamespaceSet
from .settings_tree import KeyPath, Leaf, LeafState, SettingsTree
from .template import TemplateRenderer, render_template
from .textpatch import NotFound, locate_and_replace_leaf

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


@dataclass
class SecureReport:
    """Outcome of securing one file; key paths are as written in the file."""
    path: str
    secured: List[KeyPath] = field(default_factory=list)
    unmatched: List[AmbiguousOrUnmatchedSecureTarget] = field(default_factory=list)
    written: bool = False

    def to_dict(self):
        """Convert to dictionary."""
        return {
            'path': self.path,
            'secured': ['.'.join(p) for p in self.secured],
            'unmatched': [u.to_dict() for u in self.unmatched],
            'written': self.written,
        }


class SourceFile:
    """A settings file that can be parsed, secured, signed and verified."""

    def __init__(
        self,
        path: PathLike,
        namespaces: Any = None,
        decryption_keys: Any = None,
        encryption_keys: Any = None,
        cipher: Optional[Cipher] = None,
        signer: Optional[FileSigner] = None,
        conventions: Conventions = DEFAULT_CONVENTIONS,
        renderer: TemplateRenderer = render_template,
        decoder: DocumentDecoder = decode_yaml,
    ):
        """
        Initialize a source file.

        Args:
            path: Path of the settings file (need not exist)
            namespaces: Namespaces in effect (sequence, mapping or NamespaceSet)
            decryption_keys: Key material for reading secure values
            encryption_keys: Key material for securing values
            cipher: Cipher to use; a FernetCipher over the keys by default
            signer: Signer for sign()/verify()
            conventions: Naming conventions
            renderer: Template expansion collaborator
            decoder: Document decoding collaborator
        """
        self.path = Path(path)
        self.namespaces = NamespaceSet(namespaces)
        self.decryption_keys = decryption_keys
        self.encryption_keys = encryption_keys
        self.cipher = cipher or FernetCipher(
            encryption_keys=encryption_keys,
            decryption_keys=decryption_keys,
        )
        self.signer = signer
        self.conventions = conventions
        self.renderer = renderer
        self.decoder = decoder
        self._tree: Optional[SettingsTree] = None
        self._layers: Tuple[SettingsTree, ...] = ()

    def __repr__(self) -> str:
        return f"SourceFile({str(self.path)!r})"

    def __str__(self) -> str:
        return str(self.path)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SourceFile):
            return self.path == other.path
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.path)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_bytes(self) -> bytes:
        """File content; a missing file reads as empty."""
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return b""

    def read_text(self) -> str:
        try:
            return self.read_bytes().decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeFailure(f"{self.path} is not valid UTF-8: {e}", path=str(self.path)) from e

    @property
    def parsed(self) -> bool:
        return self._tree is not None

    def parse(self, context: Optional[Mapping] = None) -> SettingsTree:
        """
        Parse the file into a SettingsTree.

        The result is cached; later calls return it regardless of context.

        Args:
            context: Values available to ``${...}`` placeholders, usually
                the tree merged from less specific files

        Raises:
            TemplateFailure: A placeholder could not be expanded
            DecodeFailure: The expanded text is not a YAML mapping
        """
        if self._tree is not None:
            return self._tree

        text = self.read_text()

        try:
            expanded = self.renderer(text, self._template_context(context))
        except (KeyError, ValueError) as e:
            raise TemplateFailure(
                f"Template expansion failed for {self.path}: {e}",
                path=str(self.path),
            ) from e

        try:
            document = self.decoder(expanded)
        except (yaml.YAMLError, TypeError) as e:
            raise DecodeFailure(
                f"Could not decode {self.path}: {e}",
                path=str(self.path),
            ) from e

        self._layers = tuple(SettingsTree.parse_layers(
            document,
            namespaces=self.namespaces,
            cipher=self.cipher,
            conventions=self.conventions,
            source=str(self.path),
        ))
        self._tree = SettingsTree.combine(self._layers)
        logger.debug(f"Parsed {self.path} ({len(self._tree.flatten())} values)")
        return self._tree

    @staticmethod
    def _template_context(context: Optional[Mapping]) -> Mapping:
        if context is None:
            return {}
        if isinstance(context, SettingsTree):
            return context.to_flat_dict()
        return context

    # ------------------------------------------------------------------
    # Securing
    # ------------------------------------------------------------------

    def _candidates(
        self,
        key_paths: Optional[Iterable[Sequence[str]]],
        patterns: Optional[Iterable[Union[str, Pattern]]],
    ) -> List[Leaf]:
        designated = {tuple(p) for p in (key_paths or ())}
        compiled = [re.compile(p, re.IGNORECASE) if isinstance(p, str) else p for p in (patterns or ())]

        # Every layer of the file, so values an in-file namespace section
        # shadows are secured too
        self.parse()
        candidates = []
        for layer in self._layers:
            for path, leaf in layer.leaves():
                if leaf.state == LeafState.PENDING:
                    candidates.append(leaf)
                elif leaf.state == LeafState.PLAIN and (
                    path in designated or any(p.search(path[-1]) for p in compiled)
                ):
                    candidates.append(leaf)
        return candidates

    def secure(
        self,
        key_paths: Optional[Iterable[Sequence[str]]] = None,
        patterns: Optional[Iterable[Union[str, Pattern]]] = None,
    ) -> SecureReport:
        """
        Encrypt plaintext values that should be secure, in place.

        Values already marked secure but still plaintext are always
        secured. Plain values can be designated too, by key path or by a
        regular expression matched against the key name.

        Args:
            key_paths: Key paths of plain values to secure
            patterns: Regexes (case-insensitive) over leaf key names

        Returns:
            SecureReport listing secured and unmatched key paths

        Raises:
            EncryptionUnavailable: There is something to secure but no
                encryption key
        """
        report = SecureReport(path=str(self.path))
        candidates = self._candidates(key_paths, patterns)
        if not candidates:
            return report

        if not self.cipher.can_encrypt:
            raise EncryptionUnavailable(
                f"{len(candidates)} value(s) in {self.path} need securing but no encryption key is set"
            )

        original = self.read_text()
        content = original
        prefix = self.conventions.secure_prefix

        for leaf in candidates:
            path = leaf.origin
            if not isinstance(leaf.value, str):
                report.unmatched.append(self._unmatched(path, "unsupported value type"))
                continue

            patched = locate_and_replace_leaf(
                content,
                path,
                leaf.value,
                self.cipher.encrypt(leaf.value),
                secure_prefix=prefix,
            )
            if isinstance(patched, NotFound):
                report.unmatched.append(self._unmatched(path, patched.reason))
                continue

            content = patched
            report.secured.append(path)

        if content != original:
            self._atomic_write(content)
            report.written = True
            self._tree = None
            self._layers = ()
            logger.info(f"Secured {len(report.secured)} value(s) in {self.path}")

        return report

    def _unmatched(self, path: KeyPath, reason: str) -> AmbiguousOrUnmatchedSecureTarget:
        logger.warning(f"Could not secure {'.'.join(path)} in {self.path}: {reason}")
        return AmbiguousOrUnmatchedSecureTarget(key_path=path, source=str(self.path), reason=reason)

    def _atomic_write(self, content: str) -> None:
        """Replace the file with content in one step, keeping its mode."""
        directory = self.path.parent
        try:
            mode = stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            mode = None

        fd, temp_path = tempfile.mkstemp(
            dir=directory,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )

        try:
            with os.fdopen(fd, 'w', encoding='utf-8', newline='') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            if mode is not None:
                os.chmod(temp_path, mode)

            os.replace(temp_path, self.path)

        except BaseException:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass
            raise

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    @property
    def signature_path(self) -> Path:
        return FileSigner.signature_path(self.path, self.conventions.signature_suffix)

    def _require_signer(self) -> FileSigner:
        if self.signer is None:
            raise SignatureUnavailable(f"No signer configured for {self.path}")
        return self.signer

    def sign(self) -> Path:
        """Write a detached signature for the file's current bytes."""
        return self._require_signer().sign_file(self.path, self.conventions.signature_suffix)

    def verify(self) -> VerificationResult:
        """Check the file against its detached signature."""
        return self._require_signer().verify_file(self.path, self.conventions.signature_suffix)
