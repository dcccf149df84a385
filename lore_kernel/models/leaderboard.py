"""Leaderboard categories, bucket index records and rank views."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class LeaderboardCategory(str, Enum):
    TOTAL_VOTES = "total_votes"
    WINNING_PERCENTAGE = "winning_percentage"
    CURRENT_STREAK = "current_streak"
    LONGEST_STREAK = "longest_streak"
    ACHIEVEMENTS = "achievements"
    AVERAGE_IMPACT = "average_impact"


class TimeFrame(str, Enum):
    ALL_TIME = "all_time"
    MONTHLY = "monthly"
    WEEKLY = "weekly"


class SortDirection(str, Enum):
    DESCENDING = "desc"                     # Higher score is better
    ASCENDING = "asc"                       # Lower score is better


class RankedScore(BaseModel):
    """A participant's slot inside a bucket index."""

    participant_id: str
    score: float
    reached_at: datetime                    # When the current score was first reached (tie-break)
    previous_rank: Optional[int] = None


class LeaderboardBucket(BaseModel):
    """Sorted index record for one (category, timeframe, period)."""

    category: LeaderboardCategory
    timeframe: TimeFrame
    period: str
    entries: List[RankedScore] = []
    last_updated: Optional[datetime] = None


class LeaderboardEntry(BaseModel):
    rank: int
    participant_id: str
    score: float
    change: int = 0                         # Positive = moved up since the previous ranking
    badge: str = ""


class LeaderboardData(BaseModel):
    category: LeaderboardCategory
    timeframe: TimeFrame
    period: str
    entries: List[LeaderboardEntry]
    total_participants: int
    last_updated: Optional[datetime] = None


class UserRankInfo(BaseModel):
    category: LeaderboardCategory
    timeframe: TimeFrame
    rank: int
    score: float
    percentile: float
    change: int
    total_participants: int


class CategoryCount(BaseModel):
    category: LeaderboardCategory
    participant_count: int


class LeaderboardStats(BaseModel):
    total_participants: int                 # Largest all-time bucket
    active_participants: int                # Participants ranked this week
    categories: List[CategoryCount]         # Most populated first
