"""
Batch resolution pipeline: records -> entities -> registries -> groups
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from owner_resolution.config.settings import Settings, get_settings
from owner_resolution.core.collision import CollisionAction, CollisionRegistry, CollisionResolver
from owner_resolution.core.comparator import SimilarityComparator
from owner_resolution.core.entities import Entity, SourceRecord, SourceTag
from owner_resolution.core.errors import ClassificationError, RunStateError
from owner_resolution.core.groups import (
    CollapsedRow,
    EntityGroupDatabase,
    GroupBuilder,
    entity_key,
)
from owner_resolution.core.name_classifier import NameClassifier
from owner_resolution.core.overrides import OverrideRuleSet
from owner_resolution.core.persistence import JsonStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class RunStats:
    records: int = 0
    classified: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)
    flagged: int = 0
    merged: int = 0
    suffixed: int = 0
    groups: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ResolutionContext:
    """
    Everything one resolution run owns

    A context is single-use; call reset() before running it again.
    """
    settings: Settings
    comparator: SimilarityComparator
    registries: Dict[SourceTag, CollisionRegistry]
    overrides: OverrideRuleSet
    stats: RunStats = field(default_factory=RunStats)
    has_run: bool = False

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        comparator: Optional[SimilarityComparator] = None,
        overrides: Optional[OverrideRuleSet] = None
    ) -> "ResolutionContext":
        return cls(
            settings=settings or get_settings(),
            comparator=comparator or SimilarityComparator(),
            registries={tag: CollisionRegistry() for tag in SourceTag},
            overrides=overrides or OverrideRuleSet(),
        )

    def reset(self) -> None:
        self.registries = {tag: CollisionRegistry() for tag in SourceTag}
        self.stats = RunStats()
        self.has_run = False


@dataclass
class RunResult:
    entities: Dict[str, Entity]
    groups: EntityGroupDatabase
    stats: RunStats
    rows: List[CollapsedRow] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": {key: entity.to_dict() for key, entity in self.entities.items()},
            "groups": self.groups.to_dict(),
            "rows": [row.to_dict() for row in self.rows],
            "stats": self.stats.to_dict(),
        }


class ResolutionPipeline:
    """
    Run classification, collision resolution and grouping over one batch
    """

    def __init__(
        self,
        context: ResolutionContext,
        classifier: Optional[NameClassifier] = None,
        progress: Optional[ProgressCallback] = None
    ):
        self.context = context
        self.classifier = classifier or NameClassifier()
        self.progress = progress
        self._unkeyed: List[Entity] = []

    def _report(self, stage: str, done: int, total: int) -> None:
        if self.progress is None:
            return
        interval = self.context.settings.progress_interval
        if done == total or (interval and done % interval == 0):
            self.progress(stage, done, total)

    def classify_records(self, records: Iterable[SourceRecord]) -> List[Entity]:
        """
        Classify records in input order

        Records whose builder fails are logged, counted and left out.
        """
        records = list(records)
        stats = self.context.stats
        stats.records += len(records)
        entities = []

        for i, record in enumerate(records):
            try:
                entity = self.classifier.classify_record(record, i)
            except ClassificationError as e:
                logger.warning("Classification failed for record %s: %s", e.record_id, e)
                stats.failed += 1
                stats.failed_ids.append(record.record_id)
            else:
                stats.classified += 1
                if entity.needs_review:
                    stats.flagged += 1
                entities.append(entity)
            self._report("classify", i + 1, len(records))

        if not records:
            self._report("classify", 0, 0)
        logger.info(
            "Classified %d of %d records (%d failed, %d flagged)",
            stats.classified, len(records), stats.failed, stats.flagged,
        )
        return entities

    def register_entities(self, entities: Iterable[Entity]) -> None:
        """Run collision resolution per source, in input order"""
        entities = list(entities)
        stats = self.context.stats
        resolvers = {
            tag: CollisionResolver(
                comparator=self.context.comparator,
                registry=registry,
                enabled=self.context.settings.collision_handler_enabled,
            )
            for tag, registry in self.context.registries.items()
        }

        for i, entity in enumerate(entities):
            outcome = resolvers[entity.source].register(entity)
            if outcome.action == CollisionAction.MERGED:
                stats.merged += 1
            elif outcome.action == CollisionAction.CREATED_WITH_SUFFIX:
                stats.suffixed += 1
            elif outcome.action == CollisionAction.NO_LOCATION_KEY:
                self._unkeyed.append(entity)
            logger.debug("Record %s: %s at %r", entity.record_id, outcome.action.value, outcome.location_key)
            self._report("register", i + 1, len(entities))

        if not entities:
            self._report("register", 0, 0)
        logger.info("Registered %d entities (%d merged, %d suffixed)", len(entities), stats.merged, stats.suffixed)

    def keyed_entities(self) -> Dict[str, Entity]:
        """
        Ordered key -> entity map over both registries plus unkeyed entities

        A key already taken gets the record id appended.
        """
        keyed: Dict[str, Entity] = {}
        collected = [
            entity
            for tag in SourceTag
            for entity in self.context.registries[tag].entities()
        ]
        collected.extend(self._unkeyed)
        for entity in collected:
            key = entity_key(entity)
            if key in keyed:
                key = f"{key}#{entity.record_id}"
            keyed[key] = entity
        return keyed

    def group_builder(self) -> GroupBuilder:
        config = self.context.settings
        return GroupBuilder(
            comparator=self.context.comparator,
            overrides=self.context.overrides,
            progress=self.progress,
            connectivity_threshold=config.connectivity_threshold,
            collapse_name_threshold=config.collapse_name_threshold,
            progress_interval=config.progress_interval,
        )

    def build_groups(self, entities: Optional[Dict[str, Entity]] = None) -> EntityGroupDatabase:
        entities = entities if entities is not None else self.keyed_entities()
        db = self.group_builder().build(entities)
        self.context.stats.groups = len(db)
        return db

    def run(self, records: Iterable[SourceRecord]) -> RunResult:
        """
        Resolve one batch of records

        Raises:
            RunStateError: if the context has already been used
        """
        if self.context.has_run:
            raise RunStateError("Resolution context already used; call reset() first")
        self.context.has_run = True
        self._unkeyed = []

        entities = self.classify_records(records)
        self.register_entities(entities)
        keyed = self.keyed_entities()
        groups = self.build_groups(keyed)

        rows = self.group_builder().collapse_all(groups, keyed)
        return RunResult(entities=keyed, groups=groups, stats=self.context.stats, rows=rows)

    async def run_and_save(self, records: Iterable[SourceRecord], store: JsonStore, run_id: str) -> RunResult:
        result = self.run(records)
        await store.save(run_id, result.to_dict())
        logger.info("Saved run %s", run_id)
        return result

    async def load_overrides(self, store: JsonStore, doc_id: str) -> OverrideRuleSet:
        """Load override rules from the store into this pipeline's context"""
        document = await store.load(doc_id)
        overrides = OverrideRuleSet.from_dict(document)
        self.context.overrides = overrides
        return overrides
