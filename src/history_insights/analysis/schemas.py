"""Structured shapes expected back from the provider."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from history_insights.exceptions import ResponseParseError
from history_insights.llm.repair import parse_json_response
from history_insights.memory.models import (
    MAX_PATTERNS,
    CamelModel,
    UserProfile,
    WorkflowPattern,
)

logger = logging.getLogger(__name__)


class SessionBoundary(CamelModel):
    start_index: int = Field(description="Index in brackets of the first timestamp in the session")
    end_index: int = Field(description="Index in brackets of the last timestamp in the session")
    description: str = Field("", description="Short label, e.g. 'Morning work session'")

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ChunkingResponse(BaseModel):
    """Sessions as index pairs into the numbered timestamp list (>30 min gap starts a new one)."""

    chunks: list[SessionBoundary] = Field(default_factory=list)

    @field_validator("chunks", mode="before")
    @classmethod
    def _drop_malformed(cls, v: Any) -> list:
        if not isinstance(v, list):
            raise ValueError("chunks must be a list")
        kept = []
        for entry in v:
            try:
                kept.append(SessionBoundary.model_validate(entry))
            except ValidationError:
                logger.debug(f"Dropping malformed session boundary: {entry!r}")
        return kept


class AnalysisResponse(CamelModel):
    patterns: list[WorkflowPattern]
    user_profile: UserProfile

    @field_validator("patterns", mode="before")
    @classmethod
    def _drop_bad_patterns(cls, v: Any) -> list:
        if not isinstance(v, list):
            raise ValueError("patterns must be a list")
        kept = []
        for entry in v:
            try:
                kept.append(WorkflowPattern.model_validate(entry))
            except ValidationError:
                logger.debug(f"Dropping malformed workflow pattern: {entry!r}")
        return kept[:MAX_PATTERNS]


CHUNK_SCHEMA = ChunkingResponse.model_json_schema(by_alias=True)
ANALYSIS_SCHEMA = AnalysisResponse.model_json_schema(by_alias=True)


def _validate(model: type[BaseModel], response: str) -> Any:
    data = parse_json_response(response)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(
            f"Response does not match {model.__name__}: {e.error_count()} errors",
            raw_response=response,
        ) from e


def parse_chunking_response(response: str) -> ChunkingResponse:
    return _validate(ChunkingResponse, response)


def parse_analysis_response(response: str) -> AnalysisResponse:
    """Repair, parse and validate an analysis or merge answer.

    Raises:
        ResponseParseError: when the text is not JSON or lacks the required shape.
    """
    return _validate(AnalysisResponse, response)
