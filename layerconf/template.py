"""
Template expansion for settings files.

Settings files may reference values resolved from earlier (less specific)
files, or values the caller supplies, with ``${dotted.name}`` placeholders:

    database:
      host: db.internal
    replica_url: postgres://${database.host}:5432/app

Only the braced form is recognised so that a bare ``$`` inside a password
is left alone; ``$$`` produces a literal ``$``. Expansion runs on the raw
text before YAML decoding.
"""

from collections.abc import Mapping
from string import Template
from typing import Any, Callable, Dict, Optional

import yaml

TemplateRenderer = Callable[[str, Mapping], str]


class SettingsTemplate(Template):
    """string.Template restricted to ``${dotted.name}`` placeholders."""

    delimiter = '$'
    pattern = r'''
    \$(?:
      (?P<escaped>\$)                          |
      \{(?P<braced>[_a-z][_a-z0-9\-]*(?:\.[_a-z0-9\-]+)*)\}  |
      (?P<named>(?!))                          |
      (?P<invalid>(?!))
    )
    '''


def render_scalar(value: Any) -> str:
    if isinstance(value, str):
        return value
    # Non-strings keep their YAML spelling (true, 3.5, [a, b])
    return yaml.safe_dump(value, default_flow_style=True, width=float('inf')).strip().removesuffix('...').strip()


def render_template(text: str, context: Optional[Mapping] = None) -> str:
    """
    Expand ``${name}`` placeholders in text.

    Args:
        text: Raw settings file text
        context: Mapping of dotted names to values

    Returns:
        Expanded text

    Raises:
        KeyError: A placeholder names a value not present in context
    """
    if '$' not in text:
        return text
    values: Dict[str, str] = {
        str(name): render_scalar(value) for name, value in (context or {}).items()
    }
    return SettingsTemplate(text).substitute(values)

