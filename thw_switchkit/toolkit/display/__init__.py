"""Toolkit displays for THW-SwitchKit."""

from .switch_display import SwitchDisplay

__all__ = [
    'SwitchDisplay',
]
