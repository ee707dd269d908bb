"""
Services package for the X.509 toolkit.
"""

from .config_service import ConfigService
from .logging_service import LoggingService

__all__ = [
    'ConfigService',
    'LoggingService'
]
