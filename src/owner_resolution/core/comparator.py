"""
Weighted similarity comparison between entities

Scores name, contact info, other info and legacy (location key) similarity
separately, then combines them with the entity variant's declared weights.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from owner_resolution.config.settings import settings
from owner_resolution.core.address_parser import is_po_box_address
from owner_resolution.core.entities import (
    COMPONENTS,
    Address,
    AggregateHousehold,
    ContactInfo,
    Entity,
    Individual,
    IndividualName,
    split_location_key,
)
from owner_resolution.core.string_matcher import (
    composite_name_similarity,
    jaro_winkler_similarity,
    levenshtein_similarity,
)

# Attributes that describe how an entity was built, not who it is
NON_COMPARABLE_ATTRIBUTES = frozenset(["case_id"])

# Structured street comparison weights
ADDRESS_COMPONENT_WEIGHTS = {
    "primary_number": 0.30,
    "street_name": 0.30,
    "city": 0.15,
    "state": 0.10,
    "zip_code": 0.15,
}
ZIP_ONLY_SCORE = 0.7
PO_BOX_NUMBER_SCORE = 0.7


@dataclass(frozen=True)
class SameOwnerThresholds:
    """Any single score strictly above its threshold declares the same owner"""
    overall: float = 0.92
    name: float = 0.95
    contact_info: float = 0.95


@dataclass(frozen=True)
class MatchCriteria:
    """
    Threshold bundle for true and near matches

    A pair matches if overall and name both clear their paired thresholds, or
    if contact info, overall or name alone clears its solo threshold.
    """
    overall_with_name: float
    name_with_overall: float
    contact_info_alone: float
    overall_alone: float
    name_alone: float

    def matches(self, result: "ComparisonResult") -> bool:
        overall = result.overall
        name = result.name or 0.0
        contact = result.contact_info or 0.0
        return (
            (overall > self.overall_with_name and name > self.name_with_overall)
            or contact > self.contact_info_alone
            or overall > self.overall_alone
            or name > self.name_alone
        )


SAME_OWNER = SameOwnerThresholds(
    overall=settings.same_owner_overall,
    name=settings.same_owner_name,
    contact_info=settings.same_owner_contact_info,
)

TRUE_MATCH = MatchCriteria(
    overall_with_name=0.80,
    name_with_overall=0.83,
    contact_info_alone=0.87,
    overall_alone=0.905,
    name_alone=0.875,
)

NEAR_MATCH = MatchCriteria(
    overall_with_name=0.77,
    name_with_overall=0.80,
    contact_info_alone=0.85,
    overall_alone=0.875,
    name_alone=0.845,
)


@dataclass
class ComparisonResult:
    """
    Component scores plus the weighted overall score

    A component is None when neither entity carries the data it needs; it is
    then left out of the weighted sum instead of counting as a mismatch.
    """
    overall: float
    components: Dict[str, Optional[float]] = field(default_factory=dict)
    weights: Dict[str, float] = field(default_factory=dict)

    @property
    def name(self) -> Optional[float]:
        return self.components.get("name")

    @property
    def contact_info(self) -> Optional[float]:
        return self.components.get("contactInfo")

    def to_dict(self) -> Dict[str, object]:
        return {
            "overall": self.overall,
            "components": dict(self.components),
            "weights": dict(self.weights),
        }


def combined_weights(a: Entity, b: Entity) -> Dict[str, float]:
    """Per-field mean of both entities' weights, so mixed-variant pairs stay symmetric"""
    wa = a.comparison_weights
    wb = b.comparison_weights
    return {c: (wa[c] + wb[c]) / 2.0 for c in COMPONENTS}


class SimilarityComparator:
    """
    Compare entities across name, contact info, other info and legacy info
    """

    def __init__(
        self,
        same_owner: Optional[SameOwnerThresholds] = None,
        true_match: MatchCriteria = TRUE_MATCH,
        near_match: MatchCriteria = NEAR_MATCH,
        po_box_fallback_threshold: Optional[float] = None,
        collision_name_weight: Optional[float] = None,
        collision_contact_weight: Optional[float] = None
    ):
        """
        Initialize comparator

        Args:
            same_owner: Same-owner thresholds (module default when omitted)
            true_match: True-match criteria
            near_match: Near-match criteria
            po_box_fallback_threshold: Raw-string threshold for unnumbered PO Boxes
            collision_name_weight: Name weight of the collision score
            collision_contact_weight: Mailing-address weight of the collision score
        """
        self.same_owner = same_owner or SAME_OWNER
        self.true_match = true_match
        self.near_match = near_match
        self.po_box_fallback_threshold = (
            po_box_fallback_threshold
            if po_box_fallback_threshold is not None
            else settings.po_box_fallback_threshold
        )
        self.collision_name_weight = (
            collision_name_weight if collision_name_weight is not None else settings.collision_name_weight
        )
        self.collision_contact_weight = (
            collision_contact_weight if collision_contact_weight is not None else settings.collision_contact_weight
        )

    def compare(self, a: Entity, b: Entity) -> ComparisonResult:
        """
        Compute component and overall similarity

        Args:
            a: First entity
            b: Second entity

        Returns:
            ComparisonResult with overall in [0, 1]
        """
        weights = combined_weights(a, b)
        components = {
            "name": self.name_similarity(a, b),
            "contactInfo": self.contact_info_similarity(a.contact_info, b.contact_info),
            "otherInfo": self.other_info_similarity(a, b),
            "legacyInfo": self.legacy_info_similarity(a, b),
        }
        return ComparisonResult(
            overall=self._weighted_overall(components, weights),
            components=components,
            weights=weights,
        )

    def compare_for_collision(self, a: Entity, b: Entity) -> ComparisonResult:
        """
        Score two entities registered at the same location

        Primary addresses are the shared location itself, so only mailing
        addresses count toward the contact score.
        """
        name = self.name_similarity(a, b) or 0.0
        contact = self.best_address_similarity(
            a.contact_info.secondary_addresses,
            b.contact_info.secondary_addresses,
        )
        overall = self.collision_name_weight * name + self.collision_contact_weight * contact
        return ComparisonResult(
            overall=float(min(1.0, max(0.0, overall))),
            components={"name": name, "contactInfo": contact},
            weights={"name": self.collision_name_weight, "contactInfo": self.collision_contact_weight},
        )

    def _weighted_overall(self, components: Dict[str, Optional[float]], weights: Dict[str, float]) -> float:
        present = [c for c in COMPONENTS if components[c] is not None]
        if not present:
            return 0.0
        w = np.array([weights[c] for c in present], dtype=float)
        s = np.array([components[c] for c in present], dtype=float)
        if w.sum() <= 0:
            return 0.0
        overall = float(np.dot(w, s) / w.sum())
        return min(1.0, max(0.0, overall))

    # Thresholds

    def is_same_owner(self, result: ComparisonResult) -> bool:
        return (
            result.overall > self.same_owner.overall
            or (result.name or 0.0) > self.same_owner.name
            or (result.contact_info or 0.0) > self.same_owner.contact_info
        )

    def is_true_match(self, result: ComparisonResult) -> bool:
        return self.is_same_owner(result) or self.true_match.matches(result)

    def is_near_match(self, result: ComparisonResult) -> bool:
        """Close to but below a true match; never true when is_true_match is"""
        if self.is_true_match(result):
            return False
        return self.near_match.matches(result)

    # Name

    def name_similarity(self, a: Entity, b: Entity) -> Optional[float]:
        # A blank name counts as no name
        named_a = a.name is not None and bool((a.display_name or "").strip())
        named_b = b.name is not None and bool((b.display_name or "").strip())
        if not named_a and not named_b:
            return None
        if not named_a or not named_b:
            return 0.0

        if isinstance(a, Individual) and isinstance(b, Individual):
            return self.individual_name_similarity(a.name, b.name)
        if isinstance(a, AggregateHousehold) and isinstance(b, AggregateHousehold):
            return self._household_pair_similarity(a, b)
        if isinstance(a, AggregateHousehold) and isinstance(b, Individual):
            return self._household_individual_similarity(a, b)
        if isinstance(b, AggregateHousehold) and isinstance(a, Individual):
            return self._household_individual_similarity(b, a)
        return composite_name_similarity(a.display_name, b.display_name)

    def individual_name_similarity(self, a: IndividualName, b: IndividualName) -> float:
        """
        Best of aligned (first, last), swapped (first, last) and full-name similarity
        """
        scores = [composite_name_similarity(a.full_name, b.full_name)]
        if (a.first_name or a.last_name) and (b.first_name or b.last_name):
            aligned = (
                levenshtein_similarity(a.first_name, b.first_name)
                + levenshtein_similarity(a.last_name, b.last_name)
            ) / 2.0
            swapped = (
                levenshtein_similarity(a.first_name, b.last_name)
                + levenshtein_similarity(a.last_name, b.first_name)
            ) / 2.0
            scores.extend([aligned, swapped])
        return max(scores)

    def _household_pair_similarity(self, a: AggregateHousehold, b: AggregateHousehold) -> float:
        best = composite_name_similarity(a.display_name, b.display_name)
        for member_a in a.members:
            for member_b in b.members:
                best = max(best, self.individual_name_similarity(member_a.name, member_b.name))
        return best

    def _household_individual_similarity(self, household: AggregateHousehold, individual: Individual) -> float:
        best = composite_name_similarity(household.display_name, individual.display_name)
        for member in household.members:
            best = max(best, self.individual_name_similarity(member.name, individual.name))
        return best

    # Contact info

    def contact_info_similarity(self, a: ContactInfo, b: ContactInfo) -> Optional[float]:
        """
        Best address-pair similarity, lifted to 1.0 by a shared email or phone
        """
        if a.is_empty() and b.is_empty():
            return None
        if a.is_empty() or b.is_empty():
            return 0.0

        best = max(
            self.best_address_similarity(a.secondary_addresses, b.secondary_addresses),
            self.best_address_similarity(a.all_addresses(), b.all_addresses()),
        )
        if (a.email and a.email == b.email) or (a.phone and a.phone == b.phone):
            best = 1.0
        return best

    def best_address_similarity(self, addresses_a: List[Address], addresses_b: List[Address]) -> float:
        best = 0.0
        for x in addresses_a:
            for y in addresses_b:
                best = max(best, self.address_similarity(x, y))
                if best >= 1.0:
                    return 1.0
        return best

    def address_similarity(self, a: Address, b: Address) -> float:
        """
        Compare two addresses component-wise, with raw-string fallback

        Returns:
            Similarity score (0-1)
        """
        po_a = is_po_box_address(a)
        po_b = is_po_box_address(b)
        if po_a and po_b:
            return self._po_box_similarity(a, b)
        if po_a != po_b:
            return 0.0

        street_comparable = (
            (a.primary_number and b.primary_number) or (a.street_name and b.street_name)
        )
        if not street_comparable:
            if a.zip_code and a.zip_code == b.zip_code:
                return max(ZIP_ONLY_SCORE, levenshtein_similarity(a.raw_text, b.raw_text))
            return levenshtein_similarity(a.raw_text, b.raw_text)

        weighted = []
        for component, weight in ADDRESS_COMPONENT_WEIGHTS.items():
            value_a = getattr(a, component)
            value_b = getattr(b, component)
            if not value_a or not value_b:
                continue
            if component == "street_name":
                score = jaro_winkler_similarity(value_a, value_b)
            elif component == "city":
                score = levenshtein_similarity(value_a, value_b)
            else:
                score = 1.0 if value_a == value_b else 0.0
            weighted.append((weight, score))

        total = sum(w for w, _ in weighted)
        return sum(w * s for w, s in weighted) / total if total else 0.0

    def _po_box_similarity(self, a: Address, b: Address) -> float:
        if a.sec_unit_num and b.sec_unit_num:
            if a.sec_unit_num != b.sec_unit_num:
                return 0.0
            if a.zip_code and b.zip_code:
                locale = 1.0 if a.zip_code == b.zip_code else 0.0
            elif a.city and b.city:
                locale = levenshtein_similarity(a.city, b.city)
            else:
                locale = 1.0
            return PO_BOX_NUMBER_SCORE + (1.0 - PO_BOX_NUMBER_SCORE) * locale
        if not a.sec_unit_num and not b.sec_unit_num:
            return 1.0 if self.po_box_raw_fallback(a, b) else 0.0
        return 0.0

    def po_box_raw_fallback(self, a: Optional[Address], b: Optional[Address]) -> bool:
        """
        Both unnumbered PO Boxes whose raw strings clear the stricter threshold
        """
        if a is None or b is None:
            return False
        if not (is_po_box_address(a) and is_po_box_address(b)):
            return False
        if a.sec_unit_num or b.sec_unit_num:
            return False
        if not a.raw_text or not b.raw_text:
            return False
        return levenshtein_similarity(a.raw_text, b.raw_text) > self.po_box_fallback_threshold

    # Other and legacy info

    def other_info_similarity(self, a: Entity, b: Entity) -> Optional[float]:
        attrs_a = {k: v for k, v in a.other_info.attributes.items() if k not in NON_COMPARABLE_ATTRIBUTES}
        attrs_b = {k: v for k, v in b.other_info.attributes.items() if k not in NON_COMPARABLE_ATTRIBUTES}
        if not attrs_a and not attrs_b:
            return None
        shared = [k for k in attrs_a if k in attrs_b]
        if not shared:
            return 0.0
        equal = sum(1 for k in shared if attrs_a[k] == attrs_b[k])
        return equal / len(shared)

    def legacy_info_similarity(self, a: Entity, b: Entity) -> Optional[float]:
        if not a.location_key and not b.location_key:
            return None
        if not a.location_key or not b.location_key:
            return 0.0
        base_a, _ = split_location_key(a.location_key)
        base_b, _ = split_location_key(b.location_key)
        return 1.0 if base_a == base_b else 0.0
