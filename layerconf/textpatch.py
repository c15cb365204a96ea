"""
Text patching for securing values in place.

Securing a value must not reformat the file it lives in: comments, blank
lines, quoting and key order all stay as they are. Instead of re-dumping
the YAML, the line holding the value is located in the raw text and only
that line (or that block literal) is rewritten:

    password: hello            ->  _secure_password: gAAAAAB...
    key: |                     ->  _secure_key: gAAAAAB...
      -----BEGIN KEY-----
      ...

Lookup is scoped by key path: each ancestor key is found at its nesting
level before the leaf key is searched inside that ancestor's block. A key
that is missing, duplicated at its level, or whose text does not spell the
expected value is reported as NotFound and the text is left untouched.

Block literals are only recognised with ``|`` and continuation lines
indented exactly two spaces past the key.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from .constants import DEFAULT_CONVENTIONS


@dataclass(frozen=True)
class NotFound:
    """Why a leaf could not be located."""
    reason: str


def _split_lines(text: str) -> List[Tuple[str, str]]:
    """Split into (content, line_ending) pairs."""
    lines = []
    for raw in text.splitlines(keepends=True):
        content = raw.rstrip('\r\n')
        lines.append((content, raw[len(content):]))
    return lines


def _indent_of(content: str) -> int:
    return len(content) - len(content.lstrip(' \t'))


def _is_structural(content: str) -> bool:
    """Lines that take part in mapping structure (not blank, not comments)."""
    stripped = content.strip()
    return bool(stripped) and not stripped.startswith('#')


def _child_indent(lines, start: int, end: int) -> Optional[int]:
    for content, _ in lines[start:end]:
        if _is_structural(content):
            return _indent_of(content)
    return None


def _block_end(lines, start: int, indent: int) -> int:
    """First line at or after start that closes a block opened at indent."""
    for index in range(start, len(lines)):
        content = lines[index][0]
        if _is_structural(content) and _indent_of(content) <= indent:
            return index
    return len(lines)


def _key_pattern(key: str, prefix: str) -> 're.Pattern':
    return re.compile(
        r'^(?P<indent>[ \t]*)(?:' + re.escape(prefix) + r')?' + re.escape(key)
        + r'(?P<space1>[ \t]*):(?P<space2>[ \t]*)(?P<rest>.*)$'
    )


def _find_key(lines, start: int, end: int, parent_indent: int, key: str, prefix: str):
    indent = _child_indent(lines, start, end)
    if indent is None or indent <= parent_indent:
        return NotFound(f"key {key!r} not found")

    pattern = _key_pattern(key, prefix)
    found = []
    for index in range(start, end):
        content = lines[index][0]
        if _indent_of(content) != indent:
            continue
        match = pattern.match(content)
        if match:
            found.append((index, match))

    if not found:
        return NotFound(f"key {key!r} not found")
    if len(found) > 1:
        return NotFound(f"key {key!r} appears {len(found)} times at the same level")
    return found[0]


def _replace_inline(lines, index: int, match, key: str, old_value: str, new_value: str, prefix: str):
    inline = re.compile(
        r'^(?P<quote>[\'"]?)' + re.escape(old_value) + r'(?P=quote)(?P<trail>[ \t]*)$'
    )
    value_match = inline.match(match.group('rest'))
    if not value_match:
        return None
    space2 = match.group('space2') or ' '
    content = (
        f"{match.group('indent')}{prefix}{key}{match.group('space1')}:{space2}"
        f"{new_value}{value_match.group('trail')}"
    )
    return lines[:index] + [(content, lines[index][1])] + lines[index + 1:]


def _replace_block(lines, index: int, match, key: str, old_value: str, new_value: str, prefix: str):
    if not re.match(r'^\|[ \t]*$', match.group('rest')):
        return None

    continuation = match.group('indent') + '  '
    block_end = index + 1
    while block_end < len(lines) and lines[block_end][0].startswith(continuation):
        block_end += 1
    if block_end == index + 1:
        return None

    # The last line of a file may have no line break; YAML then clips none
    body = ''.join(
        lines[i][0][len(continuation):] + ('\n' if lines[i][1] else '')
        for i in range(index + 1, block_end)
    )
    if body != old_value:
        return None

    content = (
        f"{match.group('indent')}{prefix}{key}{match.group('space1')}:"
        f"{match.group('space2') or ' '}{new_value}"
    )
    ending = lines[block_end - 1][1]
    return lines[:index] + [(content, ending)] + lines[block_end:]


def locate_and_replace_leaf(
    raw_text: str,
    key_path: Sequence[str],
    old_value: str,
    new_value: str,
    secure_prefix: str = DEFAULT_CONVENTIONS.secure_prefix,
) -> Union[str, NotFound]:
    """
    Replace one leaf's value and mark its key secure.

    Args:
        raw_text: Full file text
        key_path: Keys from the root to the leaf, without secure markers
        old_value: The leaf's current plaintext value
        new_value: Replacement text (ciphertext)
        secure_prefix: Marker prepended to the leaf key

    Returns:
        The rewritten text, or NotFound with the reason
    """
    if not key_path:
        return NotFound("empty key path")

    lines = _split_lines(raw_text)
    start, end, parent_indent = 0, len(lines), -1

    for depth, key in enumerate(key_path):
        located = _find_key(lines, start, end, parent_indent, key, secure_prefix)
        if isinstance(located, NotFound):
            return located
        index, match = located

        if depth < len(key_path) - 1:
            if match.group('rest').strip() and not match.group('rest').lstrip().startswith('#'):
                return NotFound(f"key {key!r} is not a block mapping")
            parent_indent = _indent_of(lines[index][0])
            start = index + 1
            end = _block_end(lines, start, parent_indent)
            continue

        leaf_key = key_path[-1]
        patched = _replace_inline(lines, index, match, leaf_key, old_value, new_value, secure_prefix)
        if patched is None:
            patched = _replace_block(lines, index, match, leaf_key, old_value, new_value, secure_prefix)
        if patched is None:
            return NotFound(f"value of {'.'.join(key_path)!r} is not written in a recognised form")
        return ''.join(content + ending for content, ending in patched)

    return NotFound("empty key path")
