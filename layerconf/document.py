"""
YAML document decoding for settings files.

JSON is a subset of YAML, so explicitly listed ``*.json`` files decode
through the same loader.
"""

from typing import Any, Callable, Dict

import yaml

DocumentDecoder = Callable[[str], Any]


def decode_yaml(text: str) -> Dict[str, Any]:
    """
    Decode settings text into plain Python data.

    Empty (or comment-only) text decodes to an empty mapping.

    Raises:
        yaml.YAMLError: The text is not valid YAML
        TypeError: The top level of the document is not a mapping
    """
    data = yaml.safe_load(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TypeError(
            f"settings document must be a mapping at the top level, got {type(data).__name__}"
        )
    return data
