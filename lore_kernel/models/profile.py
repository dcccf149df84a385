"""Participant profiles, derived statistics and achievements."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from lore_kernel.models.world import WorldAttributeEffects


class AchievementCategory(str, Enum):
    PARTICIPATION = "participation"
    ACCURACY = "accuracy"
    STREAK = "streak"
    IMPACT = "impact"
    MILESTONE = "milestone"


class AchievementMetric(str, Enum):
    """The profile/stat value an achievement threshold is compared against."""

    TOTAL_VOTES = "total_votes"
    STREAK = "streak"                       # max(current_streak, longest_streak)
    WINNING_PERCENTAGE = "winning_percentage"
    PARTICIPATION_DAYS = "participation_days"
    AVERAGE_IMPACT = "average_impact"


class Comparison(str, Enum):
    GTE = "gte"
    GT = "gt"


class AchievementDefinition(BaseModel):
    """One entry of the fixed achievement catalog."""

    id: str
    name: str
    description: str
    category: AchievementCategory
    metric: AchievementMetric
    threshold: float
    comparison: Comparison = Comparison.GTE
    min_total_votes: int = 0                # Secondary gate, e.g. accuracy needs enough votes


class Achievement(BaseModel):
    """An unlocked badge on a profile."""

    id: str
    name: str
    description: str
    category: AchievementCategory
    unlocked_at: datetime


class VoteHistoryRecord(BaseModel):
    decision_id: str
    option_id: str
    timestamp: datetime
    attribute_effects: WorldAttributeEffects = WorldAttributeEffects()   # Effects of the chosen option
    was_winner: Optional[bool] = None       # None until the outcome is processed
    attribute_impact: float = 0.0


class ParticipantProfile(BaseModel):
    """Per-participant running statistics."""

    participant_id: str
    display_name: Optional[str] = None
    total_votes: int = Field(default=0, ge=0)
    winning_votes: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    average_impact: float = 0.0
    achievements: List[Achievement] = []
    join_date: datetime
    last_vote_date: datetime
    vote_history: List[VoteHistoryRecord] = []

    def has_achievement(self, achievement_id: str) -> bool:
        return any(a.id == achievement_id for a in self.achievements)

    def find_vote(self, decision_id: str) -> Optional[int]:
        """Index of the vote-history record for a decision, if any."""
        for i in range(len(self.vote_history) - 1, -1, -1):
            if self.vote_history[i].decision_id == decision_id:
                return i
        return None


class ParticipantStats(BaseModel):
    """Statistics derived from a profile."""

    participant_id: str
    total_votes: int
    winning_votes: int
    winning_percentage: float
    current_streak: int
    longest_streak: int
    achievement_count: int
    average_impact: float
    participation_days: int
    favorite_attribute: Optional[str] = None    # Attribute the participant's choices pushed hardest
    last_active_date: datetime
