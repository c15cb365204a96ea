"""
Settings Tree - merged, secure-aware view of settings data.

A tree maps string keys to either a nested SettingsTree or a Leaf. Leaves
carry the value together with whether it is secure, what state its at-rest
representation is in, and which file contributed it:

    PLAIN       ordinary value
    DECRYPTED   secure value, decrypted from its ciphertext
    ENCRYPTED   secure value kept as ciphertext (no or wrong key)
    PENDING     secure marker present but the value is still plaintext on
                disk; SourceFile.secure() will encrypt it

Trees are never mutated after construction. merge() and the filtered views
return new trees and share unchanged branches with their inputs.
"""

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .constants import DEFAULT_CONVENTIONS, Conventions
from .crypto.cipher import Cipher, FernetCipher
from .exceptions import DecryptionFailure, UndecryptableValue
from .namespace_set import NamespaceSet
from .template import render_scalar

logger = logging.getLogger(__name__)

KeyPath = Tuple[str, ...]


class LeafState(Enum):
    """At-rest state of a leaf value."""
    PLAIN = "plain"
    DECRYPTED = "decrypted"
    ENCRYPTED = "encrypted"
    PENDING = "pending"


@dataclass(frozen=True)
class Leaf:
    """A single settings value."""
    value: Any
    secure: bool = False
    state: LeafState = LeafState.PLAIN
    source: Optional[str] = None
    # Key path as written in the source file (differs from the tree path
    # when the value came from an in-file namespace section)
    origin: KeyPath = ()


Node = Union['SettingsTree', Leaf]


class SettingsTree(Mapping):
    """
    Immutable nested settings mapping.

    Indexing returns nested trees for mappings and plain values for leaves:

        tree = SettingsTree.parse({'db': {'port': 5432}})
        tree['db']['port']        # 5432
        tree.get('db.port')       # 5432
        tree.leaf(('db', 'port')) # Leaf(value=5432, ...)
    """

    __slots__ = ('_entries', '_warnings')

    def __init__(
        self,
        entries: Optional[Dict[str, Node]] = None,
        warnings: Sequence[UndecryptableValue] = (),
    ):
        self._entries: Dict[str, Node] = dict(entries or {})
        self._warnings: Tuple[UndecryptableValue, ...] = tuple(warnings)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def parse(
        cls,
        document: Optional[Mapping],
        namespaces: Any = None,
        cipher: Optional[Cipher] = None,
        conventions: Conventions = DEFAULT_CONVENTIONS,
        source: Optional[str] = None,
    ) -> 'SettingsTree':
        """
        Build a tree from decoded document data.

        Args:
            document: Top-level mapping produced by the document decoder
            namespaces: Namespaces whose in-file sections are unwrapped
            cipher: Cipher used to recognise and decrypt secure values
            conventions: Naming conventions (secure marker)
            source: Path of the file the data came from

        Returns:
            SettingsTree
        """
        return cls.combine(cls.parse_layers(document, namespaces, cipher, conventions, source))

    @classmethod
    def parse_layers(
        cls,
        document: Optional[Mapping],
        namespaces: Any = None,
        cipher: Optional[Cipher] = None,
        conventions: Conventions = DEFAULT_CONVENTIONS,
        source: Optional[str] = None,
    ) -> List['SettingsTree']:
        """
        Trees for a document's top level and each of its namespace sections.

        The layers come in merge order: the top-level keys first, then one
        tree per in-file section whose key is a namespace, in namespace
        order. Leaves a section shadows in the merged tree are still
        present in the top-level layer.
        """
        if not document:
            return []

        namespaces = NamespaceSet(namespaces)
        builder = _TreeBuilder(cipher or FernetCipher(), conventions, source)

        sections = []
        base = {}
        for raw_key, value in document.items():
            key = str(raw_key)
            if key in namespaces and isinstance(value, Mapping):
                sections.append((namespaces.index(key), key, value))
            else:
                base[raw_key] = value

        parts = [((), base)]
        parts.extend(((key,), section) for _, key, section in sorted(sections, key=lambda s: s[0]))

        layers = []
        for origin, data in parts:
            start = len(builder.warnings)
            tree = builder.build(data, origin=origin)
            layers.append(cls(tree._entries, builder.warnings[start:]))
        return layers

    @classmethod
    def combine(cls, trees: Sequence['SettingsTree']) -> 'SettingsTree':
        """Merge trees left to right, later trees taking precedence."""
        result = cls()
        for tree in trees:
            result = result.merge(tree)
        return result

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        node = self._entries[key]
        if isinstance(node, Leaf):
            return node.value
        return node

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SettingsTree):
            return self._entries == other._entries
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"SettingsTree({self.to_dict()!r})"

    @property
    def warnings(self) -> Tuple[UndecryptableValue, ...]:
        return self._warnings

    def node(self, key: str) -> Node:
        """Raw entry (SettingsTree or Leaf) under key."""
        return self._entries[key]

    def _lookup(self, path: Union[str, Sequence[str]]) -> Node:
        parts = tuple(path.split('.')) if isinstance(path, str) else tuple(path)
        if not parts:
            raise KeyError(path)
        node: Node = self
        for part in parts:
            if not isinstance(node, SettingsTree):
                raise KeyError(path)
            node = node._entries[part]
        return node

    def get(self, path: Union[str, Sequence[str]], default: Any = None) -> Any:
        """Value at a dotted name or key path."""
        try:
            node = self._lookup(path)
        except KeyError:
            return default
        return node.value if isinstance(node, Leaf) else node

    def leaf(self, path: Union[str, Sequence[str]]) -> Leaf:
        """Leaf at a dotted name or key path. Raises KeyError."""
        node = self._lookup(path)
        if not isinstance(node, Leaf):
            raise KeyError(path)
        return node

    # ------------------------------------------------------------------
    # Merge and views
    # ------------------------------------------------------------------

    def merge(self, other: 'SettingsTree') -> 'SettingsTree':
        """
        Merge a more specific tree over this one.

        Mappings present on both sides merge recursively; anything else in
        other (scalars, sequences, leaves, secure flag) replaces this
        tree's entry wholesale. Neither input is modified.
        """
        entries = dict(self._entries)
        for key, theirs in other._entries.items():
            ours = entries.get(key)
            if isinstance(ours, SettingsTree) and isinstance(theirs, SettingsTree):
                entries[key] = ours.merge(theirs)
            else:
                entries[key] = theirs
        return SettingsTree(entries, self._warnings + other._warnings)

    def _filtered(self, secure: bool) -> 'SettingsTree':
        entries: Dict[str, Node] = {}
        for key, node in self._entries.items():
            if isinstance(node, SettingsTree):
                child = node._filtered(secure)
                if len(child):
                    entries[key] = child
            elif node.secure == secure:
                entries[key] = node
        return SettingsTree(entries, self._warnings)

    def secure_view(self) -> 'SettingsTree':
        """Tree holding only secure leaves."""
        return self._filtered(True)

    def insecure_view(self) -> 'SettingsTree':
        """Tree holding only non-secure leaves."""
        return self._filtered(False)

    # ------------------------------------------------------------------
    # Flattening and export
    # ------------------------------------------------------------------

    def leaves(self, prefix: KeyPath = ()) -> Iterator[Tuple[KeyPath, Leaf]]:
        """(key_path, Leaf) pairs in insertion order."""
        for key, node in self._entries.items():
            path = prefix + (key,)
            if isinstance(node, SettingsTree):
                yield from node.leaves(path)
            else:
                yield path, node

    def flatten(self) -> List[Tuple[KeyPath, Any]]:
        """(key_path, value) pairs in insertion order."""
        return [(path, leaf.value) for path, leaf in self.leaves()]

    def pending(self) -> List[Tuple[KeyPath, Leaf]]:
        """Secure leaves whose value is still plaintext at rest."""
        return [(path, leaf) for path, leaf in self.leaves() if leaf.state == LeafState.PENDING]

    def to_dict(self) -> Dict[str, Any]:
        """Plain nested dictionaries of values."""
        result: Dict[str, Any] = {}
        for key, node in self._entries.items():
            if isinstance(node, SettingsTree):
                result[key] = node.to_dict()
            else:
                result[key] = copy.deepcopy(node.value)
        return result

    def to_flat_dict(self, separator: str = '.') -> Dict[str, Any]:
        """Values keyed by joined key paths."""
        return {separator.join(path): copy.deepcopy(value) for path, value in self.flatten()}

    def to_environment(self) -> Dict[str, str]:
        """
        Values as environment variable assignments.

        {'database': {'password': 'x'}} -> {'DATABASE_PASSWORD': 'x'}
        """
        environment = {}
        for path, value in self.flatten():
            name = '_'.join(part.upper() for part in path)
            environment[name] = render_scalar(value)
        return environment


class _TreeBuilder:
    """Builds tree nodes from decoded data, decrypting secure values."""

    def __init__(self, cipher: Cipher, conventions: Conventions, source: Optional[str]):
        self.cipher = cipher
        self.conventions = conventions
        self.source = source
        self.warnings: List[UndecryptableValue] = []

    def build(
        self,
        data: Mapping,
        origin: KeyPath,
        inherited_secure: bool = False,
    ) -> SettingsTree:
        entries: Dict[str, Node] = {}
        for raw_key, value in data.items():
            key, marked = self.conventions.strip_secure_prefix(str(raw_key))
            secure = marked or inherited_secure
            path = origin + (key,)
            if isinstance(value, Mapping):
                entries[key] = self.build(value, path, secure)
            else:
                entries[key] = self._leaf(value, secure, path)
        return SettingsTree(entries)

    def _leaf(self, value: Any, secure: bool, path: KeyPath) -> Leaf:
        if not secure:
            return Leaf(value, False, LeafState.PLAIN, self.source, path)

        if not self.cipher.looks_encrypted(value):
            return Leaf(value, True, LeafState.PENDING, self.source, path)

        if not self.cipher.can_decrypt:
            return self._undecryptable(value, path, "no decryption key available")

        try:
            plaintext = self.cipher.decrypt(value)
        except DecryptionFailure as e:
            return self._undecryptable(value, path, str(e))
        return Leaf(plaintext, True, LeafState.DECRYPTED, self.source, path)

    def _undecryptable(self, value: Any, path: KeyPath, reason: str) -> Leaf:
        warning = UndecryptableValue(key_path=path, source=self.source, reason=reason)
        self.warnings.append(warning)
        logger.warning(f"Secure value {'.'.join(path)} in {self.source or '<data>'} left encrypted: {reason}")
        return Leaf(value, True, LeafState.ENCRYPTED, self.source, path)
