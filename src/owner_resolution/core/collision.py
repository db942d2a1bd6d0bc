"""
Location-key collision resolution

When two assessor records share a location key, the newcomer is either the
same owner as someone already registered there (merge into that entity's
subdivision ledger) or a different owner (register under a suffixed key).
"""
import logging
import string
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set

from owner_resolution.config.settings import settings
from owner_resolution.core.comparator import ComparisonResult, SimilarityComparator
from owner_resolution.core.entities import Entity, split_location_key

logger = logging.getLogger(__name__)

SUFFIX_SEQUENCE = list(string.ascii_uppercase)


class CollisionAction(str, Enum):
    REGISTERED = "REGISTERED"
    MERGED = "MERGED"
    CREATED_WITH_SUFFIX = "CREATED_WITH_SUFFIX"
    NO_LOCATION_KEY = "NO_LOCATION_KEY"


@dataclass
class RegisteredEntity:
    entity: Entity
    suffix: str
    location_key: str


@dataclass
class CollisionSlot:
    """All entities registered under one base key"""
    entries: List[RegisteredEntity] = field(default_factory=list)
    suffixes_used: Set[str] = field(default_factory=set)


@dataclass
class CollisionOutcome:
    action: CollisionAction
    entity: Entity
    location_key: str
    suffix: str = ""
    matched: Optional[Entity] = None
    score: Optional[ComparisonResult] = None


def suffix_for(position: int) -> str:
    """
    Suffix for the n-th collision at a key: A..Z, then _27, _28, ...

    Args:
        position: 1-based collision count
    """
    if position <= len(SUFFIX_SEQUENCE):
        return SUFFIX_SEQUENCE[position - 1]
    return f"_{position}"


class CollisionRegistry:
    """
    Per-run map of base location key to the entities registered under it
    """

    def __init__(self):
        self._slots: Dict[str, CollisionSlot] = {}
        self._order: List[RegisteredEntity] = []

    def slot(self, base_key: str) -> Optional[CollisionSlot]:
        return self._slots.get(base_key)

    def entries_at(self, base_key: str) -> List[RegisteredEntity]:
        slot = self._slots.get(base_key)
        return list(slot.entries) if slot else []

    def add(self, base_key: str, entity: Entity, suffix: str) -> RegisteredEntity:
        slot = self._slots.setdefault(base_key, CollisionSlot())
        if suffix:
            slot.suffixes_used.add(suffix)
        entry = RegisteredEntity(entity=entity, suffix=suffix, location_key=entity.location_key)
        slot.entries.append(entry)
        self._order.append(entry)
        return entry

    def next_suffix(self, base_key: str) -> str:
        """Next never-used suffix at this key"""
        slot = self._slots.setdefault(base_key, CollisionSlot())
        position = 1
        while suffix_for(position) in slot.suffixes_used:
            position += 1
        return suffix_for(position)

    def entities(self) -> Iterator[Entity]:
        """Registered entities in registration order"""
        for entry in self._order:
            yield entry.entity

    def ledger_size(self, base_key: str) -> int:
        return sum(e.entity.other_info.ledger_size for e in self.entries_at(base_key))

    def __len__(self) -> int:
        return len(self._order)

    def stats(self) -> Dict[str, int]:
        return {
            "total_base_keys": len(self._slots),
            "total_entities": len(self._order),
            "keys_with_multiple_owners": sum(1 for s in self._slots.values() if len(s.entries) > 1),
        }


class CollisionResolver:
    """
    Decide merge vs suffix for entities sharing a location key
    """

    def __init__(
        self,
        comparator: Optional[SimilarityComparator] = None,
        registry: Optional[CollisionRegistry] = None,
        enabled: Optional[bool] = None
    ):
        """
        Initialize collision resolver

        Args:
            comparator: Similarity comparator
            registry: Registry for this run (a fresh one when omitted)
            enabled: False registers every entity without collision checks
        """
        self.comparator = comparator or SimilarityComparator()
        self.registry = registry if registry is not None else CollisionRegistry()
        self.enabled = settings.collision_handler_enabled if enabled is None else enabled

    def register(self, entity: Entity) -> CollisionOutcome:
        """
        Register an entity, merging or suffixing on collision

        Args:
            entity: Newly classified entity

        Returns:
            CollisionOutcome describing what happened
        """
        if not entity.location_key:
            return CollisionOutcome(CollisionAction.NO_LOCATION_KEY, entity, "")

        base_key, _ = split_location_key(entity.location_key)

        if not self.enabled:
            self.registry.add(base_key, entity, "")
            return CollisionOutcome(CollisionAction.REGISTERED, entity, entity.location_key)

        existing = self.registry.entries_at(base_key)
        if not existing:
            entity.location_key = base_key
            self.registry.add(base_key, entity, "")
            return CollisionOutcome(CollisionAction.REGISTERED, entity, base_key)

        best_entry: Optional[RegisteredEntity] = None
        best_score: Optional[ComparisonResult] = None
        for entry in existing:
            score = self.comparator.compare_for_collision(entity, entry.entity)
            if not self.comparator.is_same_owner(score):
                continue
            if best_score is None or score.overall > best_score.overall:
                best_entry, best_score = entry, score

        if best_entry is not None:
            self._merge(best_entry.entity, entity)
            logger.debug(
                "Record %s merged into %s (overall %.3f)",
                entity.record_id, best_entry.location_key, best_score.overall,
            )
            return CollisionOutcome(
                CollisionAction.MERGED,
                best_entry.entity,
                best_entry.location_key,
                suffix=best_entry.suffix,
                matched=best_entry.entity,
                score=best_score,
            )

        suffix = self.registry.next_suffix(base_key)
        entity.location_key = f"{base_key}{suffix}"
        self.registry.add(base_key, entity, suffix)
        logger.debug("Record %s registered as %s", entity.record_id, entity.location_key)
        return CollisionOutcome(CollisionAction.CREATED_WITH_SUFFIX, entity, entity.location_key, suffix=suffix)

    def _merge(self, target: Entity, incoming: Entity) -> None:
        for record_id, snapshot in incoming.other_info.subdivision.items():
            target.other_info.add_subdivision_entry(record_id, snapshot)
        if incoming.record_id and incoming.record_id not in target.other_info.subdivision:
            target.other_info.add_subdivision_entry(incoming.record_id)
        for address in incoming.contact_info.secondary_addresses:
            target.contact_info.add_secondary_address(address)
