"""
CLI Module for layerconf

Provides the command-line tool for working with layered settings:
- layerctl: resolve, secure, sign and verify settings files

Usage:
    python -m layerconf.cli.layerctl files -n production
    python -m layerconf.cli.layerctl show --format json
"""

from .layerctl import main as layerctl_main

__all__ = [
    'layerctl_main',
]
