"""
Manual force-match and force-exclude rules for group building
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from owner_resolution.core.errors import OverrideRuleError

logger = logging.getLogger(__name__)


class RuleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ORPHANED = "ORPHANED"


class ConflictPolicy(str, Enum):
    """Which side of a force-exclude pair gives way"""
    DEFECTIVE_YIELDS = "DEFECTIVE_YIELDS"
    OTHER_YIELDS = "OTHER_YIELDS"
    USE_SIMILARITY = "USE_SIMILARITY"


@dataclass
class ForceMatchRule:
    rule_id: str
    key1: str
    key2: str
    reason: str = ""
    status: RuleStatus = RuleStatus.ACTIVE

    def validate(self) -> List[str]:
        errors = []
        if not self.key1:
            errors.append("key1 required")
        if not self.key2:
            errors.append("key2 required")
        if self.key1 and self.key1 == self.key2:
            errors.append("keys cannot be the same")
        return errors

    def partner_of(self, key: str) -> Optional[str]:
        if key == self.key1:
            return self.key2
        if key == self.key2:
            return self.key1
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "key1": self.key1,
            "key2": self.key2,
            "reason": self.reason,
            "status": self.status.value,
        }


@dataclass
class ForceExcludeRule:
    rule_id: str
    defective_key: str
    other_key: str
    on_conflict: ConflictPolicy = ConflictPolicy.DEFECTIVE_YIELDS
    reason: str = ""
    status: RuleStatus = RuleStatus.ACTIVE

    def validate(self) -> List[str]:
        errors = []
        if not self.defective_key:
            errors.append("defective_key required")
        if not self.other_key:
            errors.append("other_key required")
        if self.defective_key and self.defective_key == self.other_key:
            errors.append("keys cannot be the same")
        return errors

    def loser(self, key1: str, key2: str, score1: Optional[float] = None, score2: Optional[float] = None) -> str:
        """
        Key that yields when both sides of the pair compete for one group

        Under USE_SIMILARITY the lower score yields; ties and missing scores
        fall back to the defective key.
        """
        if self.on_conflict == ConflictPolicy.OTHER_YIELDS:
            return self.other_key
        if self.on_conflict == ConflictPolicy.USE_SIMILARITY and score1 is not None and score2 is not None:
            if score1 < score2:
                return key1
            if score2 < score1:
                return key2
        return self.defective_key

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "defective_key": self.defective_key,
            "other_key": self.other_key,
            "on_conflict": self.on_conflict.value,
            "reason": self.reason,
            "status": self.status.value,
        }


@dataclass
class OverrideStats:
    exclusions_applied: int = 0
    forced_matches_applied: int = 0
    contradictions: int = 0
    orphaned_rules: int = 0


class OverrideRuleSet:
    """
    Indexed force-match and force-exclude rules
    """

    def __init__(
        self,
        force_matches: Optional[Iterable[ForceMatchRule]] = None,
        force_excludes: Optional[Iterable[ForceExcludeRule]] = None
    ):
        self.force_matches: List[ForceMatchRule] = list(force_matches or [])
        self.force_excludes: List[ForceExcludeRule] = list(force_excludes or [])
        self.stats = OverrideStats()

        for rule in [*self.force_matches, *self.force_excludes]:
            errors = rule.validate()
            if errors:
                raise OverrideRuleError(f"Rule {rule.rule_id}: {', '.join(errors)}")

        self._exclusions: Dict[Tuple[str, str], ForceExcludeRule] = {}
        for rule in self.force_excludes:
            self._exclusions[self._pair(rule.defective_key, rule.other_key)] = rule

    @staticmethod
    def _pair(key1: str, key2: str) -> Tuple[str, str]:
        return (key1, key2) if key1 <= key2 else (key2, key1)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OverrideRuleSet":
        """
        Build a rule set from {"force_match": [...], "force_exclude": [...]}
        """
        data = data or {}
        try:
            matches = [
                ForceMatchRule(
                    rule_id=str(r.get("rule_id", f"FM{i + 1}")),
                    key1=r["key1"],
                    key2=r["key2"],
                    reason=r.get("reason", ""),
                    status=RuleStatus(r.get("status", RuleStatus.ACTIVE.value)),
                )
                for i, r in enumerate(data.get("force_match", []))
            ]
            excludes = [
                ForceExcludeRule(
                    rule_id=str(r.get("rule_id", f"FE{i + 1}")),
                    defective_key=r["defective_key"],
                    other_key=r["other_key"],
                    on_conflict=ConflictPolicy(r.get("on_conflict", ConflictPolicy.DEFECTIVE_YIELDS.value)),
                    reason=r.get("reason", ""),
                    status=RuleStatus(r.get("status", RuleStatus.ACTIVE.value)),
                )
                for i, r in enumerate(data.get("force_exclude", []))
            ]
        except (KeyError, ValueError) as e:
            raise OverrideRuleError(f"Malformed override rules: {e}") from e
        return cls(matches, excludes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "force_match": [r.to_dict() for r in self.force_matches],
            "force_exclude": [r.to_dict() for r in self.force_excludes],
        }

    def __bool__(self) -> bool:
        return bool(self.force_matches or self.force_excludes)

    def exclusion_rule(self, key1: str, key2: str) -> Optional[ForceExcludeRule]:
        rule = self._exclusions.get(self._pair(key1, key2))
        if rule is not None and rule.status == RuleStatus.ACTIVE:
            return rule
        return None

    def is_excluded(self, key1: str, key2: str) -> bool:
        return self.exclusion_rule(key1, key2) is not None

    def excluded_with_any(self, key: str, others: Iterable[str]) -> bool:
        """True if key has an active exclusion with any of the other keys"""
        for other in others:
            if self.is_excluded(key, other):
                self.stats.exclusions_applied += 1
                return True
        return False

    def resolve_conflicts(self, keys: List[str], scores: Optional[Dict[str, float]] = None) -> List[str]:
        """
        Drop the losing side of every force-excluded pair among keys

        Each pair is settled by its rule's on_conflict policy; USE_SIMILARITY
        reads the keys' scores from scores.

        Args:
            keys: Candidate keys in order
            scores: Optional score per key

        Returns:
            Surviving keys in their original order
        """
        scores = scores or {}
        removed: Set[str] = set()
        for i, key1 in enumerate(keys):
            if key1 in removed:
                continue
            for key2 in keys[i + 1:]:
                if key2 in removed:
                    continue
                rule = self.exclusion_rule(key1, key2)
                if rule is None:
                    continue
                loser = rule.loser(key1, key2, scores.get(key1), scores.get(key2))
                removed.add(loser)
                self.stats.exclusions_applied += 1
                logger.debug("Exclusion %s: %s yields (%s)", rule.rule_id, loser, rule.on_conflict.value)
                if loser == key1:
                    break
        return [key for key in keys if key not in removed]

    def partners_of(self, key: str) -> List[str]:
        """
        Force-match partners of a key, in rule order

        A partner that is also force-excluded with the key is dropped, since
        exclusion wins over a forced match.
        """
        partners = []
        for rule in self.force_matches:
            if rule.status != RuleStatus.ACTIVE:
                continue
            partner = rule.partner_of(key)
            if partner is None or partner in partners:
                continue
            if self.is_excluded(key, partner):
                self.stats.contradictions += 1
                logger.warning(
                    "Contradiction: %s has both force-match and force-exclude with %s; exclusion wins",
                    key, partner,
                )
                continue
            partners.append(partner)
        return partners

    def validate_against(self, keys: Set[str]) -> Dict[str, int]:
        """
        Mark rules naming unknown keys as orphaned

        Returns:
            Counts of valid and orphaned rules
        """
        valid = 0
        orphaned = 0
        for rule in self.force_matches:
            if rule.key1 in keys and rule.key2 in keys:
                valid += 1
            else:
                rule.status = RuleStatus.ORPHANED
                orphaned += 1
        for rule in self.force_excludes:
            if rule.defective_key in keys and rule.other_key in keys:
                valid += 1
            else:
                rule.status = RuleStatus.ORPHANED
                orphaned += 1
        self.stats.orphaned_rules += orphaned
        if orphaned:
            logger.warning("%d override rules reference unknown entity keys", orphaned)
        return {"valid": valid, "orphaned": orphaned}
