"""
Similarity router - semantic relatedness queries for one metric.

Endpoints (mounted under /api/v1/sr/{language}/{metric}):
- GET  /similarity?a=&b=               - Normalized relatedness of two concepts
- GET  /most-similar/{concept_id}?k=   - Top-k related concepts
- POST /cosimilarity                   - Relatedness matrix between two concept sets
- GET  /phrases/most-similar?text=&k=  - Top-k concepts related to a phrase

Errors from the query engine (unknown concept, unbuilt matrix, request too
large) are rendered by the SRError handler.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from ...core.models import ResultList
from ..dependencies import EngineDependency, RegistryDependency

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Response Models
# =============================================================================


class SimilarityResponse(BaseModel):
    """Relatedness of a concept pair."""

    language: str
    metric: str
    a: int
    b: int
    raw: float
    score: float


class ScoredConcept(BaseModel):
    """One ranked neighbour."""

    id: int
    raw: float
    score: float


class MostSimilarResponse(BaseModel):
    """Ranked neighbours of a concept or phrase."""

    language: str
    metric: str
    query: int | str
    k: int
    results: list[ScoredConcept]


class CosimilarityRequest(BaseModel):
    """Row and column concept ids; repeats and overlaps are allowed."""

    rows: list[int] = Field(min_length=1)
    cols: list[int] = Field(min_length=1)


class CosimilarityResponse(BaseModel):
    """values[i][j] is the score of (rows[i], cols[j])."""

    language: str
    metric: str
    rows: list[int]
    cols: list[int]
    values: list[list[float]]


def _results(results: ResultList) -> list[ScoredConcept]:
    return [ScoredConcept(id=r.id, raw=r.raw, score=r.score) for r in results]


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/similarity", response_model=SimilarityResponse)
def get_similarity(
    engine: EngineDependency,
    a: Annotated[int, Query(ge=0, description="First concept id")],
    b: Annotated[int, Query(ge=0, description="Second concept id")],
) -> SimilarityResponse:
    result = engine.similarity(a, b)
    return SimilarityResponse(
        language=engine.language,
        metric=engine.name,
        a=a,
        b=b,
        raw=result.raw,
        score=result.score,
    )


@router.get("/most-similar/{concept_id}", response_model=MostSimilarResponse)
def get_most_similar(
    engine: EngineDependency,
    concept_id: int,
    k: Annotated[int, Query(ge=1, description="Maximum number of results")] = 10,
) -> MostSimilarResponse:
    results = engine.most_similar(concept_id, k)
    return MostSimilarResponse(
        language=engine.language,
        metric=engine.name,
        query=concept_id,
        k=k,
        results=_results(results),
    )


@router.post("/cosimilarity", response_model=CosimilarityResponse)
def post_cosimilarity(engine: EngineDependency, body: CosimilarityRequest) -> CosimilarityResponse:
    matrix = engine.cosimilarity(body.rows, body.cols)
    return CosimilarityResponse(
        language=engine.language,
        metric=engine.name,
        rows=list(matrix.rows),
        cols=list(matrix.cols),
        values=matrix.tolist(),
    )


@router.get("/phrases/most-similar", response_model=MostSimilarResponse)
def get_phrase_most_similar(
    registry: RegistryDependency,
    language: str,
    metric: str,
    text: Annotated[str, Query(min_length=1, description="Free-text phrase")],
    k: Annotated[int, Query(ge=1, description="Maximum number of results")] = 10,
) -> MostSimilarResponse:
    resolver = registry.resolver(language, metric)
    results = resolver.most_similar(text, k)
    return MostSimilarResponse(
        language=language,
        metric=metric,
        query=text,
        k=k,
        results=_results(results),
    )
