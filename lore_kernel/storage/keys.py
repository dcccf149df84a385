"""Logical key namespace. Every persisted key is built here."""

WORLD_STATE = "world.state"
WORLD_HISTORY = "world.history"

CURRENT_DECISION = "decisions.current"

CYCLE_LEASE = "cycle.lease"
GLOBAL_STATS = "stats.global"

CACHE_PREFIX = "cache."
CACHE_REGISTRY = "cache.registry"
CACHE_WORLD_STATE = "cache.world.state"
CACHE_WORLD_TRENDS = "cache.world.trends"
CACHE_CURRENT_DECISION = "cache.decisions.current"
CACHE_PROFILE_PREFIX = "cache.profile."


def decision(decision_id: str) -> str:
    return f"decisions.{decision_id}"


def vote(decision_id: str, participant_id: str) -> str:
    return f"votes.{decision_id}.{participant_id}"


def tally_counter(decision_id: str, option_id: str) -> str:
    return f"votes.{decision_id}.tally.{option_id}"


def tally_total(decision_id: str) -> str:
    return f"votes.{decision_id}.total"


def voter_count(decision_id: str) -> str:
    return f"votes.{decision_id}.voters.count"


def voter_slot(decision_id: str, slot: int) -> str:
    return f"votes.{decision_id}.voters.{slot}"


def vote_result(decision_id: str) -> str:
    return f"votes.{decision_id}.result"


def profile(participant_id: str) -> str:
    return f"profile.{participant_id}"


def achievement_claim(participant_id: str, achievement_id: str) -> str:
    return f"profile.{participant_id}.achievement.{achievement_id}"


def leaderboard(category: str, timeframe: str, period: str) -> str:
    return f"leaderboard.{category}.{timeframe}.{period}"


def cache_tally(decision_id: str) -> str:
    return f"cache.votes.{decision_id}.tally"


def cache_scene(decision_id: str) -> str:
    return f"cache.scenes.{decision_id}"


def cache_participant_stats(participant_id: str) -> str:
    return f"{CACHE_PROFILE_PREFIX}{participant_id}.stats"
