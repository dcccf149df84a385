"""Votes, tallies and resolution results."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from lore_kernel.models.decision import DecisionOption
from lore_kernel.models.world import WorldAttributeEffects


class Vote(BaseModel):
    """One participant's choice. Unique per (participant_id, decision_id)."""

    participant_id: str
    decision_id: str
    option_id: str
    timestamp: datetime
    source: str = "web_interface"           # "web_interface" | "comment" | "batch"


class VoteTally(BaseModel):
    """Per-option counts for a decision. Counts sum to total."""

    decision_id: str
    option_votes: Dict[str, int] = {}       # option_id -> count, in authored order
    total_votes: int = Field(default=0, ge=0)

    def count_for(self, option_id: str) -> int:
        return self.option_votes.get(option_id, 0)


class VoteResult(BaseModel):
    """Outcome of a resolution. Consumed read-only by downstream generators."""

    decision_id: str
    winning_option: DecisionOption
    tally: VoteTally
    attribute_changes: WorldAttributeEffects
    participation_rate: float = Field(ge=0, le=1)
    summary: str
    resolved_at: datetime
    fallback_used: bool = False


class OptionBreakdown(BaseModel):
    option_id: str
    votes: int
    percentage: int


class VoteBreakdown(BaseModel):
    decision_id: str
    total_votes: int
    options: List[OptionBreakdown]
    sources: Dict[str, int] = {}           # vote source -> count


class BatchVoteReport(BaseModel):
    processed: int = 0
    duplicates: int = 0
    invalid: int = 0


class GlobalStats(BaseModel):
    """Running totals across every resolved decision."""

    decisions_processed: int = 0
    total_votes_cast: int = 0
    average_participation: float = 0.0
    popular_options: Dict[str, int] = {}    # Winning option text (first 50 chars) -> wins
    attribute_changes: Dict[str, int] = {
        "stability": 0,
        "curiosity": 0,
        "survival": 0,
        "reputation": 0,
    }
    processed_decisions: List[str] = []     # Recent decision ids, so replays are not counted twice
    last_decision_id: Optional[str] = None
    last_updated: Optional[datetime] = None
