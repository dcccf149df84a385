"""Engine configuration. Policy values, not law; every field is tunable."""

from typing import Optional

from pydantic import BaseModel, Field


class WorldConfig(BaseModel):
    lore_log_cap: int = 50
    history_cap: int = 100
    applied_decisions_cap: int = 100
    max_write_retries: int = 10


class VotingConfig(BaseModel):
    eligible_population: int = 100
    # None: resolving with zero votes raises NoVotesCastError.
    # Otherwise the option at this index wins by default.
    fallback_option_index: Optional[int] = None


class AchievementConfig(BaseModel):
    impact_weight: float = Field(default=0.1, gt=0, le=1)
    streak_gap_days: int = 2
    vote_history_cap: int = 100
    profile_ttl_seconds: int = 365 * 24 * 60 * 60
    max_write_retries: int = 10


class LeaderboardConfig(BaseModel):
    default_limit: int = 50
    max_write_retries: int = 20


class CacheConfig(BaseModel):
    enabled: bool = True
    world_state_ttl: int = 300
    current_decision_ttl: int = 600
    tally_ttl: int = 1800
    scene_ttl: int = 3600
    trends_ttl: int = 900
    participant_stats_ttl: int = 300


class CycleConfig(BaseModel):
    schedule: str = "0 12 * * *"            # Cron expression for resolution cycles
    lease_seconds: int = 1800
    poll_interval_seconds: int = 60
    processed_decisions_cap: int = 100


class EngineConfig(BaseModel):
    """Aggregate configuration carried by the engine context."""

    world: WorldConfig = WorldConfig()
    voting: VotingConfig = VotingConfig()
    achievements: AchievementConfig = AchievementConfig()
    leaderboard: LeaderboardConfig = LeaderboardConfig()
    cache: CacheConfig = CacheConfig()
    cycle: CycleConfig = CycleConfig()
