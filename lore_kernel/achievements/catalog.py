"""The fixed achievement catalog. Order is evaluation order."""

from typing import Dict, Tuple

from lore_kernel.models.profile import (
    AchievementCategory,
    AchievementDefinition,
    AchievementMetric,
)


def _votes(id: str, name: str, count: int, category: AchievementCategory) -> AchievementDefinition:
    return AchievementDefinition(
        id=id,
        name=name,
        description="Cast your first vote in the world" if count == 1 else f"Cast {count} votes",
        category=category,
        metric=AchievementMetric.TOTAL_VOTES,
        threshold=count,
    )


def _streak(id: str, name: str, length: int) -> AchievementDefinition:
    return AchievementDefinition(
        id=id,
        name=name,
        description=f"Win {length} votes in a row",
        category=AchievementCategory.STREAK,
        metric=AchievementMetric.STREAK,
        threshold=length,
    )


ACHIEVEMENT_CATALOG: Tuple[AchievementDefinition, ...] = (
    _votes("first_vote", "First Step", 1, AchievementCategory.PARTICIPATION),
    _votes("ten_votes", "Active Participant", 10, AchievementCategory.PARTICIPATION),
    _votes("fifty_votes", "Engaged Citizen", 50, AchievementCategory.PARTICIPATION),
    _votes("hundred_votes", "Dedicated Citizen", 100, AchievementCategory.MILESTONE),
    _votes("two_fifty_votes", "Community Pillar", 250, AchievementCategory.MILESTONE),
    _votes("five_hundred_votes", "World Guardian", 500, AchievementCategory.MILESTONE),
    _votes("thousand_votes", "World Architect", 1000, AchievementCategory.MILESTONE),
    _streak("five_win_streak", "Lucky Streak", 5),
    _streak("ten_win_streak", "Oracle", 10),
    _streak("fifteen_win_streak", "Sage", 15),
    _streak("twenty_win_streak", "Prophet", 20),
    _streak("twenty_five_win_streak", "Legendary Oracle", 25),
    AchievementDefinition(
        id="high_accuracy",
        name="Wise Counselor",
        description="Maintain 80% winning rate with 20+ votes",
        category=AchievementCategory.ACCURACY,
        metric=AchievementMetric.WINNING_PERCENTAGE,
        threshold=80,
        min_total_votes=20,
    ),
    AchievementDefinition(
        id="consistent_voter",
        name="Reliable Voice",
        description="Take part for 30 days",
        category=AchievementCategory.PARTICIPATION,
        metric=AchievementMetric.PARTICIPATION_DAYS,
        threshold=30,
    ),
    AchievementDefinition(
        id="world_shaper",
        name="World Shaper",
        description="Have significant impact on world attributes",
        category=AchievementCategory.IMPACT,
        metric=AchievementMetric.AVERAGE_IMPACT,
        threshold=2.0,
    ),
    AchievementDefinition(
        id="major_impact",
        name="Force of Change",
        description="Sustain maximum impact on the world",
        category=AchievementCategory.IMPACT,
        metric=AchievementMetric.AVERAGE_IMPACT,
        threshold=3.0,
    ),
)

CATALOG_BY_ID: Dict[str, AchievementDefinition] = {a.id: a for a in ACHIEVEMENT_CATALOG}
