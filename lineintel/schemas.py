"""
Pydantic request/response schemas for the line-intelligence API.

Explicit schemas keep request bodies from mass-assigning ORM columns
(outcome, CLV fields) and generate accurate OpenAPI docs.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from lineintel.core.odds_math import is_valid_american_odds


# ---------------------------------------------------------------------------
# Bet logging
# ---------------------------------------------------------------------------

_SIDES = {
    "spread": {"home", "away"},
    "moneyline": {"home", "away"},
    "total": {"over", "under"},
}


class BetCreate(BaseModel):
    """
    Payload for POST /api/bets.

    Outcome and CLV fields are derived by the grading jobs and cannot be
    set here.
    """

    event_id: str = Field(..., min_length=1, max_length=128, description="Odds-feed event id")
    sport: str = Field(..., min_length=2, max_length=16)
    bet_type: Literal["spread", "total", "moneyline"] = Field(..., description="Market type")
    side: Literal["home", "away", "over", "under"]
    line_at_pick: Optional[float] = Field(
        None, description="Spread or total from the picked side's perspective"
    )
    odds_at_pick: int = Field(-110, description="American odds at pick time")
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("odds_at_pick")
    @classmethod
    def validate_american_odds(cls, v: int) -> int:
        if not is_valid_american_odds(v):
            raise ValueError(
                f"odds_at_pick={v} is not valid American odds. "
                "Must be >= +100 or <= -100."
            )
        return v

    @field_validator("sport")
    @classmethod
    def lower_sport(cls, v: str) -> str:
        return v.lower()

    @model_validator(mode="after")
    def check_side_and_line(self) -> "BetCreate":
        if self.side not in _SIDES[self.bet_type]:
            raise ValueError(f"side {self.side!r} is not valid for a {self.bet_type} bet")
        if self.bet_type != "moneyline" and self.line_at_pick is None:
            raise ValueError(f"line_at_pick is required for a {self.bet_type} bet")
        return self

    model_config = {
        "json_schema_extra": {
            "example": {
                "event_id": "e912304de2b2ce35b473ce2ecd3d1502",
                "sport": "nfl",
                "bet_type": "spread",
                "side": "home",
                "line_at_pick": -3.0,
                "odds_at_pick": -110,
            }
        }
    }


class BetResponse(BaseModel):
    """A stored bet, including any derived outcome and CLV fields."""

    id: int
    event_id: str
    sport: Optional[str]
    bet_type: str
    side: str
    line_at_pick: Optional[float]
    odds_at_pick: Optional[int]
    created_at: datetime
    outcome: Optional[str] = None
    clv_value: Optional[float] = None
    closing_line_used: Optional[float] = None
    opening_line: Optional[float] = None
    beat_close: Optional[bool] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Edge alerts
# ---------------------------------------------------------------------------

class EdgeAlertResponse(BaseModel):
    id: str
    type: str
    event_id: str
    sport: Optional[str]
    severity: str
    confidence: float
    expected_value: Optional[float]
    title: str
    description: str
    data: Dict[str, Any]
    created_at: datetime
    expires_at: Optional[datetime]

    @field_validator("type", "severity", mode="before")
    @classmethod
    def enum_value(cls, v):
        return getattr(v, "value", v)

    model_config = {"from_attributes": True}


class ActiveAlertsResponse(BaseModel):
    """Structure for the /api/alerts/active endpoint."""
    as_of: datetime
    count: int
    alerts: List[EdgeAlertResponse]


# ---------------------------------------------------------------------------
# CLV reporting
# ---------------------------------------------------------------------------

class CLVBlock(BaseModel):
    count: int
    mean_clv: Optional[float]
    median_clv: Optional[float]
    std_clv: Optional[float]
    positive: int
    negative: int
    neutral: int
    beat_close_rate: Optional[float]


class CLVSummaryResponse(BaseModel):
    """Response from /api/clv/summary.  Headline figures cover spread and total picks."""
    total_graded: int
    pending: int
    mean_clv: Optional[float]
    median_clv: Optional[float]
    positive_count: int
    negative_count: int
    beat_close_rate: Optional[float]
    moneyline: CLVBlock
    by_bet_type: Dict[str, CLVBlock]
    by_sport: Dict[str, Dict[str, CLVBlock]]
    filters: Dict[str, Any]
    timestamp: str


# ---------------------------------------------------------------------------
# Job trigger
# ---------------------------------------------------------------------------

class JobRunResponse(BaseModel):
    """Response from /admin/jobs/{job}."""
    message: str
    job: str
    duration_seconds: float
    result: Dict[str, Any]
