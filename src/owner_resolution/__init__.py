"""
Owner Resolution

Reconciles property-owner records from a municipal assessor feed with a donor
database, producing canonical owner groups with consensus contact data.
"""

__version__ = "0.1.0"

from owner_resolution.core.entities import (
    Entity,
    EntityKind,
    SourceRecord,
    SourceTag,
)

__all__ = [
    "Entity",
    "EntityKind",
    "SourceRecord",
    "SourceTag",
]
