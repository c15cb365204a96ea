"""
Namespace Set - ordered, duplicate-free namespace identifiers.

Namespaces select the more specific settings files layered over the
defaults (``settings-production.yml`` over ``settings.yml``). They can be
given as a sequence or as a mapping; for a mapping only the values count,
the keys are there for the reader:

    NamespaceSet(['blue', 'production'])
    NamespaceSet({'color': 'blue', 'environment': 'production'})

Both produce ``('blue', 'production')``. Order is significant: later
namespaces take precedence over earlier ones.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Iterator, Tuple

from .exceptions import InvalidNamespaceInput


class NamespaceSet:
    """Immutable ordered set of namespace strings."""

    __slots__ = ('_namespaces',)

    def __init__(self, raw: Any = None):
        self._namespaces: Tuple[str, ...] = self._normalize(raw)

    @staticmethod
    def _normalize(raw: Any) -> Tuple[str, ...]:
        if raw is None:
            return ()
        if isinstance(raw, NamespaceSet):
            return raw._namespaces

        if isinstance(raw, Mapping):
            values = list(raw.values())
        elif isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
            values = [raw]
        else:
            values = list(raw)

        ordered = []
        seen = set()
        for value in values:
            namespace = NamespaceSet._coerce(value)
            if namespace not in seen:
                seen.add(namespace)
                ordered.append(namespace)
        return tuple(ordered)

    @staticmethod
    def _coerce(value: Any) -> str:
        if value is None:
            raise InvalidNamespaceInput("Namespace values must not be None")
        if isinstance(value, bytes):
            try:
                return value.decode('utf-8')
            except UnicodeDecodeError as e:
                raise InvalidNamespaceInput(f"Namespace {value!r} is not valid UTF-8") from e
        if isinstance(value, (Mapping, list, tuple, set, frozenset)):
            raise InvalidNamespaceInput(
                f"Namespace values must be scalars, got {type(value).__name__}"
            )
        try:
            return str(value)
        except Exception as e:
            raise InvalidNamespaceInput(
                f"Namespace {type(value).__name__} cannot be converted to a string: {e}"
            ) from e

    def __iter__(self) -> Iterator[str]:
        return iter(self._namespaces)

    def __len__(self) -> int:
        return len(self._namespaces)

    def __contains__(self, namespace: object) -> bool:
        return namespace in self._namespaces

    def __eq__(self, other: object) -> bool:
        if isinstance(other, NamespaceSet):
            return self._namespaces == other._namespaces
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._namespaces)

    def __repr__(self) -> str:
        return f"NamespaceSet({list(self._namespaces)!r})"

    def to_tuple(self) -> Tuple[str, ...]:
        return self._namespaces

    def index(self, namespace: str) -> int:
        return self._namespaces.index(namespace)
