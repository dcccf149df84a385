"""
Leaderboard Ranker — sorted bucket indexes per category, timeframe and period.

Behavioral Contract:
- One bucket record per (category, timeframe, period), kept sorted on write
  and updated with compare-and-set; reads never sort.
- Order: score (per-category direction), then who reached the score first,
  then participant id. Ranks are ordinal: 1..n, no shared ranks.
- Monthly buckets are keyed by calendar month, weekly buckets by the
  Monday that starts the week.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from loguru import logger

from lore_kernel.models.config import LeaderboardConfig
from lore_kernel.models.leaderboard import (
    CategoryCount,
    LeaderboardBucket,
    LeaderboardCategory,
    LeaderboardData,
    LeaderboardEntry,
    LeaderboardStats,
    RankedScore,
    SortDirection,
    TimeFrame,
    UserRankInfo,
)
from lore_kernel.models.profile import ParticipantStats
from lore_kernel.storage import keys
from lore_kernel.storage.records import RecordStore

CATEGORY_DIRECTIONS: Dict[LeaderboardCategory, SortDirection] = {
    category: SortDirection.DESCENDING for category in LeaderboardCategory
}

ALL_TIME_PERIOD = "all"


def period_for(timeframe: TimeFrame, when: datetime) -> str:
    if timeframe == TimeFrame.MONTHLY:
        return when.strftime("%Y-%m")
    if timeframe == TimeFrame.WEEKLY:
        monday = when.date() - timedelta(days=when.weekday())
        return monday.isoformat()
    return ALL_TIME_PERIOD


def category_score(stats: ParticipantStats, category: LeaderboardCategory) -> float:
    if category == LeaderboardCategory.ACHIEVEMENTS:
        return stats.achievement_count
    return getattr(stats, category.value)


def badge_for_rank(rank: int) -> str:
    if rank == 1:
        return "🥇"
    if rank == 2:
        return "🥈"
    if rank == 3:
        return "🥉"
    if rank <= 10:
        return "🏆"
    if rank <= 25:
        return "⭐"
    return ""


def _sort_key(direction: SortDirection) -> Callable[[RankedScore], tuple]:
    sign = -1 if direction == SortDirection.DESCENDING else 1
    return lambda e: (sign * e.score, e.reached_at, e.participant_id)


class LeaderboardRanker:
    """Maintains and reads leaderboard bucket indexes."""

    def __init__(
        self,
        records: RecordStore,
        config: Optional[LeaderboardConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.records = records
        self.config = config or LeaderboardConfig()
        self._clock = clock

    def _load(
        self, category: LeaderboardCategory, timeframe: TimeFrame, period: str
    ) -> LeaderboardBucket:
        return self.records.get_or_default(
            keys.leaderboard(category.value, timeframe.value, period),
            LeaderboardBucket,
            lambda: LeaderboardBucket(category=category, timeframe=timeframe, period=period),
        )

    # --- writes ---

    def update_entry(
        self,
        participant_id: str,
        category: LeaderboardCategory,
        score: float,
        timeframe: TimeFrame = TimeFrame.ALL_TIME,
        now: Optional[datetime] = None,
    ) -> int:
        """Set a participant's score in the current period's bucket. Returns the new rank."""
        now = now or self._clock()
        period = period_for(timeframe, now)
        sort_key = _sort_key(CATEGORY_DIRECTIONS[category])

        def mutate(bucket: LeaderboardBucket) -> Optional[LeaderboardBucket]:
            old_ranks = {e.participant_id: i + 1 for i, e in enumerate(bucket.entries)}
            existing = next((e for e in bucket.entries if e.participant_id == participant_id), None)
            if existing is not None and existing.score == score:
                return None

            bucket.entries = [e for e in bucket.entries if e.participant_id != participant_id]
            bucket.entries.append(
                RankedScore(
                    participant_id=participant_id,
                    score=score,
                    reached_at=now,
                    previous_rank=existing.previous_rank if existing else None,
                )
            )
            bucket.entries.sort(key=sort_key)

            for rank, entry in enumerate(bucket.entries, start=1):
                old_rank = old_ranks.get(entry.participant_id)
                if old_rank is not None and old_rank != rank:
                    entry.previous_rank = old_rank
            bucket.last_updated = now
            return bucket

        bucket = self.records.update(
            keys.leaderboard(category.value, timeframe.value, period),
            LeaderboardBucket,
            mutate,
            default_factory=lambda: LeaderboardBucket(
                category=category, timeframe=timeframe, period=period
            ),
            max_retries=self.config.max_write_retries,
        )
        return next(
            i + 1 for i, e in enumerate(bucket.entries) if e.participant_id == participant_id
        )

    def update_participant(
        self, stats: ParticipantStats, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Refresh every category and timeframe from one participant's stats."""
        now = now or self._clock()
        ranks = {}
        for category in LeaderboardCategory:
            score = category_score(stats, category)
            for timeframe in TimeFrame:
                rank = self.update_entry(stats.participant_id, category, score, timeframe, now)
                ranks[f"{category.value}.{timeframe.value}"] = rank
        logger.debug("Leaderboards updated for {}", stats.participant_id)
        return ranks

    # --- reads ---

    def get_leaderboard(
        self,
        category: LeaderboardCategory,
        timeframe: TimeFrame = TimeFrame.ALL_TIME,
        limit: Optional[int] = None,
        period: Optional[str] = None,
    ) -> LeaderboardData:
        period = period or period_for(timeframe, self._clock())
        limit = self.config.default_limit if limit is None else limit
        bucket = self._load(category, timeframe, period)

        entries = []
        for rank, ranked in enumerate(bucket.entries[:max(limit, 0)], start=1):
            entries.append(
                LeaderboardEntry(
                    rank=rank,
                    participant_id=ranked.participant_id,
                    score=ranked.score,
                    change=ranked.previous_rank - rank if ranked.previous_rank else 0,
                    badge=badge_for_rank(rank),
                )
            )
        return LeaderboardData(
            category=category,
            timeframe=timeframe,
            period=period,
            entries=entries,
            total_participants=len(bucket.entries),
            last_updated=bucket.last_updated,
        )

    def get_user_rank(
        self,
        participant_id: str,
        category: LeaderboardCategory,
        timeframe: TimeFrame = TimeFrame.ALL_TIME,
        period: Optional[str] = None,
    ) -> Optional[UserRankInfo]:
        period = period or period_for(timeframe, self._clock())
        bucket = self._load(category, timeframe, period)
        total = len(bucket.entries)

        for rank, ranked in enumerate(bucket.entries, start=1):
            if ranked.participant_id == participant_id:
                return UserRankInfo(
                    category=category,
                    timeframe=timeframe,
                    rank=rank,
                    score=ranked.score,
                    percentile=round((1 - (rank - 1) / total) * 100, 2),
                    change=ranked.previous_rank - rank if ranked.previous_rank else 0,
                    total_participants=total,
                )
        return None

    def leaderboard_stats(self) -> LeaderboardStats:
        now = self._clock()
        counts: List[CategoryCount] = []
        for category in LeaderboardCategory:
            bucket = self._load(category, TimeFrame.ALL_TIME, ALL_TIME_PERIOD)
            counts.append(CategoryCount(category=category, participant_count=len(bucket.entries)))
        counts.sort(key=lambda c: c.participant_count, reverse=True)

        weekly = self._load(
            LeaderboardCategory.TOTAL_VOTES,
            TimeFrame.WEEKLY,
            period_for(TimeFrame.WEEKLY, now),
        )
        return LeaderboardStats(
            total_participants=max((c.participant_count for c in counts), default=0),
            active_participants=len(weekly.entries),
            categories=counts,
        )
