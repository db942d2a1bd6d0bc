"""
Exception hierarchy for owner resolution
"""
from typing import Optional


class OwnerResolutionError(Exception):
    """Base class for all owner resolution errors"""


class ClassificationError(OwnerResolutionError):
    """A name builder failed for a single record"""

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        case_id: Optional[str] = None,
        raw_name: Optional[str] = None
    ):
        super().__init__(message)
        self.record_id = record_id
        self.case_id = case_id
        self.raw_name = raw_name


class EntitySerializationError(OwnerResolutionError):
    """Unknown kind or malformed serialized entity"""


class OverrideRuleError(OwnerResolutionError):
    """Invalid force-match or force-exclude rule"""


class RunStateError(OwnerResolutionError):
    """A run context was reused without being reset"""


class DocumentNotFoundError(OwnerResolutionError):
    """The document store has no document with the requested id"""
