"""Lore kernel data models."""

from lore_kernel.models.cache import CacheEnvelope, CacheKeyRegistry, CacheStats
from lore_kernel.models.config import (
    AchievementConfig,
    CacheConfig,
    CycleConfig,
    EngineConfig,
    LeaderboardConfig,
    VotingConfig,
    WorldConfig,
)
from lore_kernel.models.cycle import CycleReport
from lore_kernel.models.decision import Decision, DecisionOption, DecisionStatus
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
from lore_kernel.models.profile import (
    Achievement,
    AchievementCategory,
    AchievementDefinition,
    AchievementMetric,
    Comparison,
    ParticipantProfile,
    ParticipantStats,
    VoteHistoryRecord,
)
from lore_kernel.models.vote import (
    BatchVoteReport,
    GlobalStats,
    OptionBreakdown,
    Vote,
    VoteBreakdown,
    VoteResult,
    VoteTally,
)
from lore_kernel.models.world import (
    ATTRIBUTE_NAMES,
    AttributeStatus,
    AttributeSummary,
    AttributeTrend,
    CriticalAttribute,
    CriticalStateReport,
    HistoryPage,
    WorldAttributeEffects,
    WorldAttributes,
    WorldHistoryEntry,
    WorldHistoryLog,
    WorldState,
)

__all__ = [
    "ATTRIBUTE_NAMES",
    "Achievement",
    "AchievementCategory",
    "AchievementConfig",
    "AchievementDefinition",
    "AchievementMetric",
    "AttributeStatus",
    "AttributeSummary",
    "AttributeTrend",
    "BatchVoteReport",
    "CacheConfig",
    "CacheEnvelope",
    "CacheKeyRegistry",
    "CacheStats",
    "CategoryCount",
    "Comparison",
    "CriticalAttribute",
    "CriticalStateReport",
    "CycleConfig",
    "CycleReport",
    "Decision",
    "DecisionOption",
    "DecisionStatus",
    "EngineConfig",
    "GlobalStats",
    "HistoryPage",
    "LeaderboardBucket",
    "LeaderboardCategory",
    "LeaderboardConfig",
    "LeaderboardData",
    "LeaderboardEntry",
    "LeaderboardStats",
    "OptionBreakdown",
    "ParticipantProfile",
    "ParticipantStats",
    "RankedScore",
    "SortDirection",
    "TimeFrame",
    "UserRankInfo",
    "Vote",
    "VoteBreakdown",
    "VoteHistoryRecord",
    "VoteResult",
    "VoteTally",
    "VotingConfig",
    "WorldAttributeEffects",
    "WorldAttributes",
    "WorldConfig",
    "WorldHistoryEntry",
    "WorldHistoryLog",
    "WorldState",
]
