"""
File Set - discovery, ordering and merging of settings files.

Given path patterns and an ordered list of namespaces, a FileSet works out
which files contribute to the configuration and in what order:

    settings.yml                  <- no namespace tag, least specific
    settings/database.yml
    settings-blue.yml             <- namespace 'blue'
    settings-production.yml       <- namespace 'production', most specific

Files without a namespace tag come first, in discovery order. Namespaced
files follow grouped by namespace, in the order the namespaces were given,
so reordering the namespaces changes precedence without touching any file.
Namespaced files whose tag is not among the namespaces are left out.

Discovery order is pattern order; the matches of a single pattern are
sorted. A directory pattern matches its direct children with the default
settings extensions; any other pattern is a glob used as-is.

Usage:
    file_set = FileSet(files=['config/settings.yml', 'config/settings'],
                       basepath='config',
                       namespaces=['production'],
                       decryption_keys=[key])
    file_set.filenames
    tree = file_set.to_settings_tree()
    file_set.verify_all()       # {'settings.yml': VerificationResult, ...}
"""

import os
import glob
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .constants import DEFAULT_CONVENTIONS, Conventions
from .crypto.cipher import Cipher, FernetCipher, build_cipher
from .crypto.signer import FileSigner, SignatureStatus, VerificationResult
from .exceptions import FileFailure, SignatureFailure, TemplateFailure
from .logging_config import log_with_data
from .namespace_set import NamespaceSet
from .settings_tree import SettingsTree
from .source_file import SecureReport, SourceFile
from .utils.error_handling import ErrorAggregator, ErrorCategory, ErrorSeverity, handle_error

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]
MergeCallback = Callable[[SettingsTree], None]


def namespace_token(path: PathLike) -> Optional[str]:
    """
    Namespace tag of a settings file name, or None when it has none.

    settings-blue.yml -> 'blue'; settings-blue.yml.erb -> 'blue';
    settings.yml -> None
    """
    name = Path(path).name
    if '-' not in name:
        return None
    token = name.rsplit('-', 1)[1].split('.', 1)[0]
    return token or None


class FileSet:
    """Ordered, deduplicated collection of settings files."""

    def __init__(
        self,
        files: Union[PathLike, Sequence[PathLike]],
        basepath: Optional[PathLike] = None,
        namespaces: Any = None,
        decryption_keys: Any = None,
        encryption_keys: Any = None,
        cipher: Optional[Cipher] = None,
        cipher_name: str = FernetCipher.name,
        signer: Optional[FileSigner] = None,
        conventions: Conventions = DEFAULT_CONVENTIONS,
        context: Optional[Mapping[str, Any]] = None,
    ):
        """
        Initialize and resolve the file set.

        Args:
            files: One pattern or a sequence of patterns (files, globs or
                directories); relative patterns are taken from basepath
            basepath: Directory that reported paths are relative to
                (defaults to the current directory)
            namespaces: Namespaces in precedence order
            decryption_keys: Key material for reading secure values
            encryption_keys: Key material for securing values
            cipher: Cipher instance; built from cipher_name and the keys
                when omitted
            cipher_name: Name of the cipher to build ('fernet' or 'sealed')
            signer: Signer for sign_all()/verify_all()
            conventions: Naming conventions
            context: Extra values available to ``${...}`` placeholders
        """
        self.patterns: Tuple[str, ...] = self._normalize_patterns(files)
        self.basepath = Path(basepath) if basepath is not None else Path.cwd()
        self.namespaces = NamespaceSet(namespaces)
        self.decryption_keys = decryption_keys
        self.encryption_keys = encryption_keys
        self.cipher = cipher or build_cipher(cipher_name, encryption_keys, decryption_keys)
        self.signer = signer
        self.conventions = conventions
        self.context: Dict[str, Any] = dict(context or {})

        self.error_aggregator = ErrorAggregator()
        self.errors: Dict[str, FileFailure] = {}

        self._tree: Optional[SettingsTree] = None
        self._fold_steps: List[SettingsTree] = []

        self.files: Tuple[SourceFile, ...] = tuple(
            SourceFile(
                path,
                namespaces=self.namespaces,
                decryption_keys=decryption_keys,
                encryption_keys=encryption_keys,
                cipher=self.cipher,
                signer=signer,
                conventions=conventions,
            )
            for path in self._resolve()
        )

        log_with_data(logger, logging.DEBUG, "Resolved settings files", {
            'count': len(self.files),
            'namespaces': list(self.namespaces),
        })

    def __repr__(self) -> str:
        return f"FileSet({self.filenames!r}, namespaces={self.namespaces.to_tuple()!r})"

    def __iter__(self):
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    @staticmethod
    def _normalize_patterns(files: Union[PathLike, Sequence[PathLike]]) -> Tuple[str, ...]:
        if isinstance(files, (str, bytes, os.PathLike)):
            files = [files]
        return tuple(os.fsdecode(f) for f in files)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _expand(self, pattern: str) -> List[Path]:
        """Paths matched by one pattern, sorted."""
        path = Path(pattern)
        if not path.is_absolute():
            path = self.basepath / path

        if path.is_dir():
            globs = [str(path / g) for g in self.conventions.directory_globs()]
        else:
            globs = [str(path)]

        matches = set()
        for expression in globs:
            matches.update(Path(m) for m in glob.glob(expression))

        expanded = sorted(m for m in matches if m.is_file())
        logger.debug(f"Pattern {pattern!r} matched {len(expanded)} file(s)")
        return expanded

    def _resolve(self) -> List[Path]:
        discovered: List[Path] = []
        seen = set()
        for pattern in self.patterns:
            for path in self._expand(pattern):
                if path not in seen:
                    seen.add(path)
                    discovered.append(path)

        plain = [p for p in discovered if namespace_token(p) is None]
        by_namespace = [
            [p for p in discovered if namespace_token(p) == namespace]
            for namespace in self.namespaces
        ]

        resolved: List[Path] = []
        seen = set()
        for path in plain + [p for group in by_namespace for p in group]:
            if path not in seen:
                seen.add(path)
                resolved.append(path)
        return resolved

    @property
    def filenames(self) -> List[str]:
        """Resolved file paths, least to most specific."""
        return [str(f.path) for f in self.files]

    def relative_path(self, source: Union[SourceFile, PathLike]) -> str:
        """Path of a file relative to basepath."""
        path = source.path if isinstance(source, SourceFile) else Path(source)
        return os.path.relpath(path, self.basepath)

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def _template_context(self, tree: SettingsTree) -> Dict[str, Any]:
        merged = tree.to_flat_dict()
        merged.update(self.context)
        return merged

    def to_settings_tree(self, on_each_merge: Optional[MergeCallback] = None) -> SettingsTree:
        """
        Fold all files into one SettingsTree.

        Each file is parsed only once the files before it have been merged,
        so its ``${...}`` placeholders can refer to their values. A file
        that fails to decode or expand is skipped and recorded in errors.

        Args:
            on_each_merge: Called with the running tree after each file

        Returns:
            The merged tree (cached)
        """
        if self._tree is not None:
            if on_each_merge is not None:
                for step in self._fold_steps:
                    on_each_merge(step)
            return self._tree

        tree = SettingsTree()
        steps = []
        for source in self.files:
            try:
                parsed = source.parse(self._template_context(tree))
            except FileFailure as e:
                self._record_failure(source, e)
                parsed = SettingsTree()

            tree = tree.merge(parsed)
            steps.append(tree)
            if on_each_merge is not None:
                on_each_merge(tree)

        self._tree = tree
        self._fold_steps = steps

        log_with_data(logger, logging.INFO, "Merged settings", {
            'files': len(self.files),
            'failed': len(self.errors),
            'undecryptable': len(tree.warnings),
        })
        return tree

    def _record_failure(self, source: SourceFile, error: FileFailure) -> None:
        # A refold after secure_all() parses a failed file again
        if str(source.path) in self.errors:
            return
        category = ErrorCategory.TEMPLATE if isinstance(error, TemplateFailure) else ErrorCategory.DECODE
        self.errors[str(source.path)] = error
        handle_error(
            error,
            "parse",
            category,
            additional_context={'path': self.relative_path(source)},
            aggregator=self.error_aggregator,
        )

    @property
    def warnings(self):
        """Undecryptable values in the merged tree."""
        return self.to_settings_tree().warnings

    # ------------------------------------------------------------------
    # Securing and signing
    # ------------------------------------------------------------------

    def secure_all(self, **designation) -> Dict[str, SecureReport]:
        """
        Secure every file, in resolution order.

        Keyword arguments (key_paths, patterns) are passed to
        SourceFile.secure(). Files that failed to parse are skipped.

        Returns:
            Mapping of basepath-relative path to SecureReport
        """
        self.to_settings_tree()

        reports = {}
        for source in self.files:
            if str(source.path) in self.errors:
                logger.warning(f"Skipping {source.path}: it could not be parsed")
                continue
            reports[self.relative_path(source)] = source.secure(**designation)

        if any(report.written for report in reports.values()):
            self._tree = None
            self._fold_steps = []
        return reports

    def sign_all(self) -> Dict[str, Path]:
        """Sign every existing file; returns relative path -> signature path."""
        signatures = {}
        for source in self.files:
            if not source.path.exists():
                continue
            signatures[self.relative_path(source)] = source.sign()
        return signatures

    def verify_all(self) -> Dict[str, VerificationResult]:
        """
        Verify every file; returns relative path -> VerificationResult.

        Files that do not verify are logged and recorded in
        error_aggregator: a mismatch as critical, a missing signature as
        an error.
        """
        results = {}
        for source in self.files:
            relative = self.relative_path(source)
            result = source.verify()
            results[relative] = result
            if not result.is_valid:
                self._record_signature_failure(source, relative, result)
        return results

    def _record_signature_failure(self, source: SourceFile, relative: str, result: VerificationResult) -> None:
        missing = result.status == SignatureStatus.MISSING_SIGNATURE
        handle_error(
            SignatureFailure(f"{relative}: {result.status.value}", path=str(source.path)),
            "verify",
            ErrorCategory.SIGNATURE,
            severity=ErrorSeverity.ERROR if missing else None,
            additional_context={'path': relative, **result.details},
            aggregator=self.error_aggregator,
        )
