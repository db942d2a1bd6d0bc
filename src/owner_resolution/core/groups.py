"""
Cross-source entity grouping, consensus, connectivity and collapse
"""
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from owner_resolution.config.settings import settings
from owner_resolution.core.comparator import ComparisonResult, SimilarityComparator
from owner_resolution.core.entities import Entity, EntityKind, Individual, SourceTag
from owner_resolution.core.overrides import OverrideRuleSet

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]

# (phase, kinds) for the primary-source seeding phases
PRIMARY_PHASES: Tuple[Tuple[int, Tuple[EntityKind, ...]], ...] = (
    (1, (EntityKind.AGGREGATE_HOUSEHOLD,)),
    (2, (EntityKind.INDIVIDUAL,)),
    (3, (EntityKind.BUSINESS, EntityKind.LEGAL_CONSTRUCT)),
)
SECONDARY_PHASE = 4


def entity_key(entity: Entity) -> str:
    """Group-database key of an entity, e.g. PRIMARY:1234A"""
    return f"{entity.source.value}:{entity.location_key}"


def source_of_key(key: str) -> str:
    return key.split(":", 1)[0]


@dataclass
class EntityGroup:
    """
    Canonical cluster of entities believed to be one owner
    """
    index: int
    founding_member_key: str
    member_keys: List[str] = field(default_factory=list)
    near_miss_keys: List[str] = field(default_factory=list)
    has_foreign_source_member: bool = False
    consensus_entity: Optional[Entity] = None
    construction_phase: int = 0
    _consensus_stale: bool = field(default=True, repr=False, compare=False)

    def __post_init__(self):
        if self.founding_member_key not in self.member_keys:
            self.member_keys.insert(0, self.founding_member_key)

    def add_member(self, key: str) -> bool:
        """
        Add a member key; a key previously held as a near miss is promoted

        Returns:
            True if the key was added
        """
        if key in self.member_keys:
            return False
        if key in self.near_miss_keys:
            self.near_miss_keys.remove(key)
        self.member_keys.append(key)
        self._consensus_stale = True
        self.update_foreign_source_flag()
        return True

    def add_near_miss(self, key: str) -> bool:
        if key in self.member_keys or key in self.near_miss_keys:
            return False
        self.near_miss_keys.append(key)
        return True

    def update_foreign_source_flag(self) -> bool:
        founding_source = source_of_key(self.founding_member_key)
        self.has_foreign_source_member = any(
            source_of_key(k) != founding_source for k in self.member_keys
        )
        return self.has_foreign_source_member

    def build_consensus(self, entities: Mapping[str, Entity]) -> Optional[Entity]:
        """
        Synthesize a representative entity from the group's members

        The founding member's value wins for every field it carries; gaps are
        filled from the other members in member order. Near misses never
        contribute.

        Args:
            entities: Entity lookup by key

        Returns:
            Consensus entity, or None when the founding member is unknown
        """
        if self.consensus_entity is not None and not self._consensus_stale:
            return self.consensus_entity

        founder = entities.get(self.founding_member_key)
        if founder is None:
            return None

        consensus = copy.deepcopy(founder)
        others = [
            entities[k] for k in self.member_keys
            if k != self.founding_member_key and k in entities
        ]
        info = consensus.contact_info
        for other in others:
            # Name only transfers between entities of the same kind
            if consensus.name is None and other.kind == consensus.kind and other.name is not None:
                consensus.name = copy.deepcopy(other.name)
            oc = other.contact_info
            if info.primary_address is None and oc.primary_address is not None:
                info.primary_address = copy.deepcopy(oc.primary_address)
            if not info.secondary_addresses and oc.secondary_addresses:
                info.secondary_addresses = copy.deepcopy(oc.secondary_addresses)
            if not info.email:
                info.email = oc.email
            if not info.phone:
                info.phone = oc.phone
            if not info.po_box:
                info.po_box = oc.po_box
            for attr, value in other.other_info.attributes.items():
                if consensus.other_info.attributes.get(attr) in (None, ""):
                    consensus.other_info.attributes[attr] = value

        self.consensus_entity = consensus
        self._consensus_stale = False
        return consensus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "founding_member_key": self.founding_member_key,
            "member_keys": list(self.member_keys),
            "near_miss_keys": list(self.near_miss_keys),
            "consensus_entity": self.consensus_entity.to_dict() if self.consensus_entity else None,
            "has_foreign_source_member": self.has_foreign_source_member,
            "construction_phase": self.construction_phase,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityGroup":
        consensus = data.get("consensus_entity")
        group = cls(
            index=int(data["index"]),
            founding_member_key=data["founding_member_key"],
            member_keys=list(data.get("member_keys", [])),
            near_miss_keys=list(data.get("near_miss_keys", [])),
            has_foreign_source_member=bool(data.get("has_foreign_source_member", False)),
            consensus_entity=Entity.from_dict(consensus) if consensus else None,
            construction_phase=int(data.get("construction_phase", 0)),
        )
        group._consensus_stale = consensus is None
        return group


class EntityGroupDatabase:
    """
    Ordered map of group index to EntityGroup
    """

    def __init__(self, groups: Optional[List[EntityGroup]] = None):
        self.groups: Dict[int, EntityGroup] = {}
        for group in groups or []:
            self.groups[group.index] = group

    def create_group(self, founding_key: str, phase: int) -> EntityGroup:
        group = EntityGroup(
            index=len(self.groups),
            founding_member_key=founding_key,
            construction_phase=phase,
        )
        group.update_foreign_source_flag()
        self.groups[group.index] = group
        return group

    def __len__(self) -> int:
        return len(self.groups)

    def __iter__(self) -> Iterator[EntityGroup]:
        return iter(self.groups.values())

    def __getitem__(self, index: int) -> EntityGroup:
        return self.groups[index]

    def find_group_by_member(self, key: str) -> Optional[EntityGroup]:
        for group in self.groups.values():
            if key in group.member_keys:
                return group
        return None

    def stats(self) -> Dict[str, Any]:
        by_phase: Dict[int, int] = {}
        for group in self.groups.values():
            by_phase[group.construction_phase] = by_phase.get(group.construction_phase, 0) + 1
        return {
            "total_groups": len(self.groups),
            "multi_member_groups": sum(1 for g in self.groups.values() if len(g.member_keys) > 1),
            "groups_with_foreign_source_member": sum(
                1 for g in self.groups.values() if g.has_foreign_source_member
            ),
            "groups_with_near_misses": sum(1 for g in self.groups.values() if g.near_miss_keys),
            "total_near_misses": sum(len(g.near_miss_keys) for g in self.groups.values()),
            "groups_by_phase": by_phase,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"groups": [g.to_dict() for g in self.groups.values()]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityGroupDatabase":
        return cls([EntityGroup.from_dict(g) for g in data.get("groups", [])])


class CollapseLabel(str, Enum):
    SINGLE = "SINGLE"
    CONSOLIDATED_GROUP = "CONSOLIDATED_GROUP"
    CONSENSUS_COLLAPSE = "CONSENSUS_COLLAPSE"


@dataclass
class CollapsedRow:
    """One mailing row produced from a group"""
    group_index: int
    label: CollapseLabel
    name_entity: Optional[Entity]
    consensus_entity: Optional[Entity]
    collapsed: bool

    @property
    def mailing_address(self) -> str:
        if self.consensus_entity is None:
            return ""
        address = self.consensus_entity.contact_info.best_mailing_address()
        return address.raw_text if address is not None else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_index": self.group_index,
            "label": self.label.value,
            "mailing_address": self.mailing_address,
            "name_entity": self.name_entity.to_dict() if self.name_entity else None,
            "consensus_entity": self.consensus_entity.to_dict() if self.consensus_entity else None,
            "collapsed": self.collapsed,
        }


class GroupBuilder:
    """
    Build entity groups across both sources in four phases
    """

    def __init__(
        self,
        comparator: Optional[SimilarityComparator] = None,
        overrides: Optional[OverrideRuleSet] = None,
        progress: Optional[ProgressCallback] = None,
        connectivity_threshold: Optional[float] = None,
        collapse_name_threshold: Optional[float] = None,
        progress_interval: Optional[int] = None
    ):
        """
        Initialize group builder

        Args:
            comparator: Similarity comparator
            overrides: Force-match / force-exclude rules
            progress: Callback receiving (stage, done, total)
            connectivity_threshold: Pairwise contact score for a connectivity edge
            collapse_name_threshold: Name score for two individuals to share a row
            progress_interval: Entities between progress reports
        """
        self.comparator = comparator or SimilarityComparator()
        self.overrides = overrides or OverrideRuleSet()
        self.progress = progress
        self.connectivity_threshold = (
            connectivity_threshold if connectivity_threshold is not None else settings.connectivity_threshold
        )
        self.collapse_name_threshold = (
            collapse_name_threshold if collapse_name_threshold is not None else settings.collapse_name_threshold
        )
        self.progress_interval = (
            progress_interval if progress_interval is not None else settings.progress_interval
        )
        self._next_report = 0

    def build(self, entities_by_key: Mapping[str, Entity]) -> EntityGroupDatabase:
        """
        Group entities

        Args:
            entities_by_key: Ordered mapping of entity key to entity

        Returns:
            EntityGroupDatabase indexed in creation order
        """
        keys = list(entities_by_key)
        total = len(keys)
        db = EntityGroupDatabase()
        assigned: Dict[str, int] = {}
        self._next_report = self.progress_interval or 0

        if self.overrides:
            self.overrides.validate_against(set(keys))

        for phase, kinds in PRIMARY_PHASES:
            for key in keys:
                entity = entities_by_key[key]
                if key in assigned or entity.source != SourceTag.PRIMARY or entity.kind not in kinds:
                    continue
                self._seed_group(key, phase, entities_by_key, keys, db, assigned)
                self._report(len(assigned), total)
            logger.debug("Phase %d complete: %d groups", phase, len(db))

        for key in keys:
            if key in assigned:
                continue
            self._place_leftover(key, entities_by_key, db, assigned)
            self._report(len(assigned), total)

        if self.progress:
            self.progress("groups", total, total)
        logger.info(
            "Built %d groups from %d entities (%d multi-member)",
            len(db), total, db.stats()["multi_member_groups"],
        )
        return db

    def _report(self, done: int, total: int) -> None:
        if not self.progress or not self.progress_interval or done < self._next_report:
            return
        self.progress("groups", done, total)
        self._next_report = (done // self.progress_interval + 1) * self.progress_interval

    def _add_forced_partners(
        self,
        group: EntityGroup,
        partners: List[str],
        entities: Mapping[str, Entity],
        assigned: Dict[str, int]
    ) -> None:
        for partner in partners:
            if partner not in entities or partner in assigned:
                continue
            if self.overrides.excluded_with_any(partner, group.member_keys):
                continue
            group.add_member(partner)
            assigned[partner] = group.index
            self.overrides.stats.forced_matches_applied += 1

    def _excluded_from(self, key: str, group: EntityGroup) -> bool:
        return any(self.overrides.is_excluded(key, member) for member in group.member_keys)

    def _seed_group(
        self,
        key: str,
        phase: int,
        entities: Mapping[str, Entity],
        keys: List[str],
        db: EntityGroupDatabase,
        assigned: Dict[str, int]
    ) -> EntityGroup:
        group = db.create_group(key, phase)
        assigned[key] = group.index
        seed = entities[key]
        self._add_forced_partners(group, self.overrides.partners_of(key), entities, assigned)

        # Candidates excluded with the founder or a forced partner are never scored
        priority = list(group.member_keys)
        matches: List[str] = []
        scores: Dict[str, float] = {}
        near: List[str] = []
        for candidate in keys:
            if candidate in assigned:
                continue
            if self.overrides.excluded_with_any(candidate, priority):
                continue
            result = self.comparator.compare(seed, entities[candidate])
            if self.comparator.is_same_owner(result):
                matches.append(candidate)
                scores[candidate] = result.overall
            elif self.comparator.is_near_match(result):
                near.append(candidate)

        # Matches excluded with each other: the rule's on_conflict picks who yields
        for candidate in self.overrides.resolve_conflicts(matches, scores):
            group.add_member(candidate)
            assigned[candidate] = group.index
        for candidate in near:
            if not self._excluded_from(candidate, group):
                group.add_near_miss(candidate)

        group.update_foreign_source_flag()
        return group

    def _place_leftover(
        self,
        key: str,
        entities: Mapping[str, Entity],
        db: EntityGroupDatabase,
        assigned: Dict[str, int]
    ) -> None:
        entity = entities[key]
        partners = self.overrides.partners_of(key)

        for partner in partners:
            if partner not in assigned:
                continue
            group = db[assigned[partner]]
            if self.overrides.excluded_with_any(key, group.member_keys):
                continue
            group.add_member(key)
            assigned[key] = group.index
            self.overrides.stats.forced_matches_applied += 1
            logger.debug("%s forced into group %d with %s", key, group.index, partner)
            self._add_forced_partners(group, partners, entities, assigned)
            return

        best: Optional[Tuple[EntityGroup, ComparisonResult]] = None
        best_near: Optional[Tuple[EntityGroup, ComparisonResult]] = None

        for group in db:
            if self.overrides.excluded_with_any(key, group.member_keys):
                continue
            representative = group.build_consensus(entities) or entities[group.founding_member_key]
            result = self.comparator.compare(entity, representative)
            if self.comparator.is_same_owner(result):
                if best is None or result.overall > best[1].overall:
                    best = (group, result)
            elif self.comparator.is_near_match(result):
                if best_near is None or result.overall > best_near[1].overall:
                    best_near = (group, result)

        if best is not None:
            group = best[0]
            group.add_member(key)
            assigned[key] = group.index
            logger.debug("%s joined group %d (overall %.3f)", key, group.index, best[1].overall)
        else:
            group = db.create_group(key, SECONDARY_PHASE)
            assigned[key] = group.index
            if best_near is not None:
                best_near[0].add_near_miss(key)
                logger.debug("%s is a near miss of group %d", key, best_near[0].index)

        self._add_forced_partners(group, partners, entities, assigned)

    # Connectivity and collapse

    def is_contact_info_connected(self, group: EntityGroup, entities: Mapping[str, Entity]) -> bool:
        """
        True if every member is reachable through contact-info edges

        An edge joins two members whose contact-info score exceeds the
        connectivity threshold, or whose first mailing addresses are
        unnumbered PO Boxes with near-identical raw text.
        """
        keys = group.member_keys
        if len(keys) <= 1:
            return True
        if any(k not in entities for k in keys):
            return False

        reached = {keys[0]}
        frontier = [keys[0]]
        while frontier:
            current = frontier.pop()
            for other in keys:
                if other in reached:
                    continue
                if self._connected(entities[current], entities[other]):
                    reached.add(other)
                    frontier.append(other)
        return len(reached) == len(keys)

    def _connected(self, a: Entity, b: Entity) -> bool:
        score = self.comparator.contact_info_similarity(a.contact_info, b.contact_info) or 0.0
        if score > self.connectivity_threshold:
            return True
        first_a = a.contact_info.secondary_addresses[0] if a.contact_info.secondary_addresses else None
        first_b = b.contact_info.secondary_addresses[0] if b.contact_info.secondary_addresses else None
        return self.comparator.po_box_raw_fallback(first_a, first_b)

    def collapse(self, group: EntityGroup, entities: Mapping[str, Entity]) -> CollapsedRow:
        """
        Reduce a group to one mailing row

        Args:
            group: Group to collapse
            entities: Entity lookup by key

        Returns:
            CollapsedRow with label and the entity whose name is printed
        """
        consensus = group.build_consensus(entities)
        if len(group.member_keys) <= 1:
            label = CollapseLabel.SINGLE
        elif self.is_contact_info_connected(group, entities):
            label = CollapseLabel.CONSOLIDATED_GROUP
        else:
            label = CollapseLabel.CONSENSUS_COLLAPSE

        return CollapsedRow(
            group_index=group.index,
            label=label,
            name_entity=self._name_entity(group, entities, consensus),
            consensus_entity=consensus,
            collapsed=label != CollapseLabel.SINGLE,
        )

    def _name_entity(
        self,
        group: EntityGroup,
        entities: Mapping[str, Entity],
        consensus: Optional[Entity]
    ) -> Optional[Entity]:
        individuals = [
            entities[k] for k in group.member_keys
            if k in entities and isinstance(entities[k], Individual)
        ]
        if len(individuals) == 1:
            return individuals[0]
        if len(individuals) == 2:
            first, second = individuals
            if first.name is not None and second.name is not None:
                score = self.comparator.individual_name_similarity(first.name, second.name)
                if score > self.collapse_name_threshold:
                    return first
        return consensus

    def collapse_all(self, db: EntityGroupDatabase, entities: Mapping[str, Entity]) -> List[CollapsedRow]:
        return [self.collapse(group, entities) for group in db]
