"""
FastAPI application for owner resolution
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from owner_resolution import __version__
from owner_resolution.config.logging_config import configure_logging
from owner_resolution.config.settings import settings
from owner_resolution.core.comparator import SimilarityComparator
from owner_resolution.core.entities import SourceRecord, SourceTag
from owner_resolution.core.errors import ClassificationError, OverrideRuleError
from owner_resolution.core.name_classifier import NameClassifier
from owner_resolution.core.overrides import OverrideRuleSet
from owner_resolution.core.pipeline import ResolutionContext, ResolutionPipeline

configure_logging()
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Owner Resolution API",
    description="Property-owner and donor record reconciliation",
    version=__version__
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models for API
class RecordIn(BaseModel):
    """One source record"""
    owner_name: str = ""
    record_id: Optional[str] = None
    source: SourceTag = SourceTag.PRIMARY
    fire_number: Optional[str] = None
    pid: Optional[str] = None
    location: str = ""
    mailing_address: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_record(self, default_id: str) -> SourceRecord:
        return SourceRecord(
            record_id=self.record_id or default_id,
            owner_name=self.owner_name,
            source=self.source,
            location=self.location,
            mailing_address=self.mailing_address,
            fire_number=self.fire_number,
            pid=self.pid,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            phone=self.phone,
            extra=dict(self.extra),
        )


class ClassifyResponse(BaseModel):
    case_id: str
    kind: str
    entity: Dict[str, Any]


class CompareRequest(BaseModel):
    entity1: RecordIn
    entity2: RecordIn


class CompareResponse(BaseModel):
    overall: float
    components: Dict[str, Optional[float]]
    same_owner: bool
    true_match: bool
    near_match: bool


class ResolveRequest(BaseModel):
    records: List[RecordIn]
    overrides: Optional[Dict[str, Any]] = None


class ResolveResponse(BaseModel):
    stats: Dict[str, Any]
    groups: List[Dict[str, Any]]
    rows: List[Dict[str, Any]]


# Dependency injection for services
def get_classifier() -> NameClassifier:
    return NameClassifier()


def get_comparator() -> SimilarityComparator:
    return SimilarityComparator()


def _classify(classifier: NameClassifier, record: RecordIn, default_id: str):
    try:
        return classifier.classify_record(record.to_record(default_id))
    except ClassificationError as e:
        raise HTTPException(status_code=422, detail=str(e))


# API Endpoints

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Owner Resolution API",
        "version": __version__,
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.post("/classify", response_model=ClassifyResponse)
def classify(request: RecordIn, classifier: NameClassifier = Depends(get_classifier)):
    """
    Classify one owner name

    Args:
        request: Record carrying the owner name and optional location

    Returns:
        Case id, entity kind and serialized entity
    """
    entity = _classify(classifier, request, "api-1")
    return ClassifyResponse(case_id=entity.case_id, kind=entity.kind.value, entity=entity.to_dict())


@app.post("/compare", response_model=CompareResponse)
def compare(
    request: CompareRequest,
    classifier: NameClassifier = Depends(get_classifier),
    comparator: SimilarityComparator = Depends(get_comparator)
):
    """
    Classify and compare two records
    """
    first = _classify(classifier, request.entity1, "api-1")
    second = _classify(classifier, request.entity2, "api-2")
    result = comparator.compare(first, second)
    return CompareResponse(
        overall=result.overall,
        components=result.components,
        same_owner=comparator.is_same_owner(result),
        true_match=comparator.is_true_match(result),
        near_match=comparator.is_near_match(result),
    )


@app.post("/resolve", response_model=ResolveResponse)
def resolve(request: ResolveRequest):
    """
    Resolve a batch of records into owner groups

    Args:
        request: Records in input order plus optional override rules

    Returns:
        Run stats (including failed and flagged counts), groups and collapsed rows
    """
    try:
        overrides = OverrideRuleSet.from_dict(request.overrides)
    except OverrideRuleError as e:
        raise HTTPException(status_code=422, detail=str(e))

    context = ResolutionContext.create(overrides=overrides)
    pipeline = ResolutionPipeline(context)
    records = [r.to_record(f"rec-{i + 1}") for i, r in enumerate(request.records)]
    result = pipeline.run(records)

    return ResolveResponse(
        stats=result.stats.to_dict(),
        groups=[g.to_dict() for g in result.groups],
        rows=[row.to_dict() for row in result.rows],
    )


def main() -> None:
    uvicorn.run(
        "owner_resolution.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )


# Run application
if __name__ == "__main__":
    main()
