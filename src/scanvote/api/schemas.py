"""Pydantic request/response schemas for the ScanVote API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

from scanvote.engine.results import Empty, Inconclusive, Winner, round_half_up

if TYPE_CHECKING:
    from scanvote.engine.results import AggregatedResult, Candidate, Identity


class IdentityInfo(BaseModel):
    """A known person or artwork."""

    label: str
    name: str
    description: str
    image_url: str

    @classmethod
    def from_identity(cls, identity: Identity) -> IdentityInfo:
        return cls(
            label=identity.label,
            name=identity.name,
            description=identity.description,
            image_url=identity.image_url,
        )


class IdentitiesResponse(BaseModel):
    """Response for the identity listing endpoint."""

    identities: list[IdentityInfo]


class CandidateInfo(BaseModel):
    """One contender of an inconclusive attempt."""

    identity: IdentityInfo
    vote_count: int
    avg_matches: int
    max_matches: float
    method: str

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> CandidateInfo:
        return cls(
            identity=IdentityInfo.from_identity(candidate.identity),
            vote_count=candidate.vote_count,
            avg_matches=round_half_up(candidate.avg_matches),
            max_matches=candidate.max_matches,
            method=candidate.method.value,
        )


class ScanResultResponse(BaseModel):
    """Outcome of one attempt or of a finalized continuous scan."""

    kind: Literal["winner", "inconclusive", "empty"]
    total_frames: int
    identity: IdentityInfo | None = None
    method: str | None = None
    vote_count: int | None = None
    max_matches: float | None = None
    avg_matches: int | None = None
    consensus_pct: int | None = Field(default=None, ge=0, le=100)
    confidence: int | None = Field(default=None, ge=0, le=100, description="Display confidence (0-100)")
    reason: str | None = Field(default=None, description="Inconclusive reason: 'insufficient_consensus' or 'tie'")
    top_candidates: list[CandidateInfo] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: AggregatedResult) -> ScanResultResponse:
        match result:
            case Winner():
                return cls(
                    kind="winner",
                    total_frames=result.total_frames,
                    identity=IdentityInfo.from_identity(result.identity),
                    method=result.method.value,
                    vote_count=result.vote_count,
                    max_matches=result.max_matches,
                    avg_matches=result.avg_matches,
                    consensus_pct=result.consensus_pct,
                    confidence=result.display_confidence,
                )
            case Inconclusive():
                return cls(
                    kind="inconclusive",
                    total_frames=result.total_frames,
                    reason=result.reason.value,
                    top_candidates=[CandidateInfo.from_candidate(c) for c in result.top_candidates],
                )
            case Empty():
                return cls(kind="empty", total_frames=result.total_frames)


class ScanStartRequest(BaseModel):
    """Options for a continuous scan."""

    mobile: bool = Field(default=False, description="Use the smaller mobile burst size")


class ScanStatusResponse(BaseModel):
    """State of the continuous scan."""

    active: bool
    state: str
    frames_per_attempt: int | None
    history_length: int
    pending_frames: int
    last_result: ScanResultResponse | None
    last_error: str | None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    identities_loaded: int
    fast_classifier: bool
    scan_active: bool
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
