"""
Data models for the loader protocol.

This module contains Pydantic models representing:

- Decoded messages
- Command results
- Runtime settings
"""

from osmoload.models.records import CommandResult, Message
from osmoload.models.settings import LoaderSettings

__all__ = [
    # Records
    "Message",
    "CommandResult",
    # Settings
    "LoaderSettings",
]
