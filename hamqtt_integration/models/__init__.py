"""Data models for Home Assistant discovery documents."""

from .discovery import (
    Device,
    Origin,
    Component,
    DiscoveryDocument,
)

__all__ = [
    "Device",
    "Origin",
    "Component",
    "DiscoveryDocument",
]
