"""
Configuration module for the AEO query service
"""

from .settings import Settings, get_settings

__all__ = [
    'Settings',
    'get_settings'
]
