"""
Models package for the X.509 toolkit.
"""

from .config import Config, ConfigValidationError, ConfigValidationResult

__all__ = [
    'Config',
    'ConfigValidationError',
    'ConfigValidationResult',
]
