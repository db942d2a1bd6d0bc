"""
Core owner resolution components
"""
from owner_resolution.core.entities import (
    AggregateHousehold,
    Business,
    Entity,
    EntityKind,
    Individual,
    LegalConstruct,
    SourceRecord,
    SourceTag,
)
from owner_resolution.core.name_classifier import NameClassifier
from owner_resolution.core.comparator import ComparisonResult, SimilarityComparator
from owner_resolution.core.collision import CollisionRegistry, CollisionResolver
from owner_resolution.core.overrides import OverrideRuleSet
from owner_resolution.core.groups import EntityGroup, EntityGroupDatabase, GroupBuilder
from owner_resolution.core.persistence import JsonFileStore, JsonStore
from owner_resolution.core.pipeline import ResolutionContext, ResolutionPipeline, RunResult

__all__ = [
    "AggregateHousehold",
    "Business",
    "Entity",
    "EntityKind",
    "Individual",
    "LegalConstruct",
    "SourceRecord",
    "SourceTag",
    "NameClassifier",
    "ComparisonResult",
    "SimilarityComparator",
    "CollisionRegistry",
    "CollisionResolver",
    "OverrideRuleSet",
    "EntityGroup",
    "EntityGroupDatabase",
    "GroupBuilder",
    "JsonFileStore",
    "JsonStore",
    "ResolutionContext",
    "ResolutionPipeline",
    "RunResult",
]
