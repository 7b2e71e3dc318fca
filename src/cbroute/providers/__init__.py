"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: providers/__init__.py.
"""

from .registry import ProviderRegistry, descriptor_from_mapping

__all__ = [
    "ProviderRegistry",
    "descriptor_from_mapping",
]
