"""
Achievement & Streak Engine — participant profiles, streaks and unlocks.

Behavioral Contract:
- Profiles are created lazily on a participant's first vote.
- Every profile write is an optimistic compare-and-set update.
- Recording a vote or an outcome twice for the same decision changes nothing.
- Achievements are evaluated generically from the catalog; each id is
  awarded at most once per profile (atomic claim + re-checked append).
"""

import math
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from loguru import logger

from lore_kernel.achievements.catalog import ACHIEVEMENT_CATALOG
from lore_kernel.cache.layer import CacheLayer
from lore_kernel.errors import NotFoundError, ValidationError
from lore_kernel.models.config import AchievementConfig
from lore_kernel.models.profile import (
    Achievement,
    AchievementDefinition,
    AchievementMetric,
    Comparison,
    ParticipantProfile,
    ParticipantStats,
    VoteHistoryRecord,
)
from lore_kernel.models.world import ATTRIBUTE_NAMES, WorldAttributeEffects
from lore_kernel.storage import keys
from lore_kernel.storage.records import RecordStore

SECONDS_PER_DAY = 24 * 60 * 60


def favorite_attribute(profile: ParticipantProfile) -> Optional[str]:
    """
    The attribute with the largest total absolute effect across the options the
    participant chose. Ties go to the earlier attribute; None if nothing moved.
    """
    totals = {name: 0 for name in ATTRIBUTE_NAMES}
    for record in profile.vote_history:
        for name, value in record.attribute_effects.items():
            totals[name] += abs(value)
    best = max(ATTRIBUTE_NAMES, key=lambda name: totals[name])
    return best if totals[best] > 0 else None


def compute_stats(profile: ParticipantProfile, now: datetime) -> ParticipantStats:
    """Derived statistics. Participation days count whole or partial days since joining."""
    winning_percentage = (
        profile.winning_votes / profile.total_votes * 100 if profile.total_votes else 0.0
    )
    elapsed = max(0.0, (now - profile.join_date).total_seconds())
    return ParticipantStats(
        participant_id=profile.participant_id,
        total_votes=profile.total_votes,
        winning_votes=profile.winning_votes,
        winning_percentage=round(winning_percentage, 2),
        current_streak=profile.current_streak,
        longest_streak=profile.longest_streak,
        achievement_count=len(profile.achievements),
        average_impact=round(profile.average_impact, 2),
        participation_days=math.ceil(elapsed / SECONDS_PER_DAY),
        favorite_attribute=favorite_attribute(profile),
        last_active_date=profile.last_vote_date,
    )


def metric_value(
    metric: AchievementMetric, profile: ParticipantProfile, stats: ParticipantStats
) -> float:
    if metric == AchievementMetric.TOTAL_VOTES:
        return profile.total_votes
    if metric == AchievementMetric.STREAK:
        return max(profile.current_streak, profile.longest_streak)
    if metric == AchievementMetric.WINNING_PERCENTAGE:
        return stats.winning_percentage
    if metric == AchievementMetric.PARTICIPATION_DAYS:
        return stats.participation_days
    if metric == AchievementMetric.AVERAGE_IMPACT:
        return profile.average_impact
    raise ValidationError(f"Unknown achievement metric: {metric}")


def is_unlocked(
    definition: AchievementDefinition, profile: ParticipantProfile, stats: ParticipantStats
) -> bool:
    if profile.total_votes < definition.min_total_votes:
        return False
    value = metric_value(definition.metric, profile, stats)
    if definition.comparison == Comparison.GT:
        return value > definition.threshold
    return value >= definition.threshold


class AchievementEngine:
    """Participant profiles on the key-value store."""

    def __init__(
        self,
        records: RecordStore,
        config: Optional[AchievementConfig] = None,
        cache: Optional[CacheLayer] = None,
        catalog: Sequence[AchievementDefinition] = ACHIEVEMENT_CATALOG,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.records = records
        self.config = config or AchievementConfig()
        self.cache = cache
        self.catalog = tuple(catalog)
        self._by_id = {d.id: d for d in self.catalog}
        self._clock = clock

    def _update_profile(
        self,
        participant_id: str,
        mutate: Callable[[ParticipantProfile], Optional[ParticipantProfile]],
        create_at: Optional[datetime] = None,
    ) -> ParticipantProfile:
        def new_profile() -> ParticipantProfile:
            return ParticipantProfile(
                participant_id=participant_id,
                join_date=create_at,
                last_vote_date=create_at,
            )

        return self.records.update(
            keys.profile(participant_id),
            ParticipantProfile,
            mutate,
            default_factory=new_profile if create_at is not None else None,
            ttl_seconds=self.config.profile_ttl_seconds,
            max_retries=self.config.max_write_retries,
        )

    def _invalidate_stats(self, participant_id: str) -> None:
        if self.cache is not None:
            self.cache.delete(keys.cache_participant_stats(participant_id))

    # --- profile ---

    def get_profile(self, participant_id: str) -> Optional[ParticipantProfile]:
        return self.records.get(keys.profile(participant_id), ParticipantProfile)

    def _read_stats(self, participant_id: str) -> ParticipantStats:
        profile = self.get_profile(participant_id)
        if profile is None:
            raise NotFoundError(
                f"No profile for participant {participant_id}",
                key=keys.profile(participant_id),
            )
        return compute_stats(profile, self._clock())

    def get_participant_stats(self, participant_id: str, use_cache: bool = True) -> ParticipantStats:
        if self.cache is None or not use_cache:
            return self._read_stats(participant_id)
        return self.cache.get_or_set(
            keys.cache_participant_stats(participant_id),
            lambda: self._read_stats(participant_id),
            self.cache.config.participant_stats_ttl,
            type_=ParticipantStats,
        )

    # --- votes and outcomes ---

    def record_vote(
        self,
        participant_id: str,
        decision_id: str,
        option_id: str,
        now: Optional[datetime] = None,
        effects: Optional[WorldAttributeEffects] = None,
    ) -> ParticipantProfile:
        """Count a vote on the participant's profile. A repeated call for the same decision is a no-op."""
        now = now or self._clock()
        effects = effects or WorldAttributeEffects()

        def mutate(profile: ParticipantProfile) -> Optional[ParticipantProfile]:
            if profile.find_vote(decision_id) is not None:
                return None
            profile.total_votes += 1
            profile.vote_history.append(
                VoteHistoryRecord(
                    decision_id=decision_id,
                    option_id=option_id,
                    timestamp=now,
                    attribute_effects=effects,
                )
            )
            profile.vote_history = profile.vote_history[-self.config.vote_history_cap:]
            profile.last_vote_date = now
            return profile

        self._update_profile(participant_id, mutate, create_at=now)
        self._invalidate_stats(participant_id)
        self.evaluate(participant_id, now)
        return self.get_profile(participant_id)

    def process_outcome(
        self,
        participant_id: str,
        decision_id: str,
        was_winner: bool,
        attribute_impact: float,
        now: Optional[datetime] = None,
    ) -> ParticipantProfile:
        """
        Apply a resolved decision to the participant's streak, wins and impact.

        Streak continuity: a gap of more than `streak_gap_days` whole days between
        this vote and the previous one resets the current streak before the
        win/loss rule is applied.
        """
        now = now or self._clock()
        weight = self.config.impact_weight

        def mutate(profile: ParticipantProfile) -> Optional[ParticipantProfile]:
            index = profile.find_vote(decision_id)
            if index is None:
                logger.warning("{} has no recorded vote on {}", participant_id, decision_id)
                return None
            record = profile.vote_history[index]
            if record.was_winner is not None:
                return None

            if index > 0:
                previous = profile.vote_history[index - 1]
                gap_days = (record.timestamp - previous.timestamp).total_seconds() // SECONDS_PER_DAY
                if gap_days > self.config.streak_gap_days:
                    profile.current_streak = 0

            if was_winner:
                profile.winning_votes += 1
                profile.current_streak += 1
                profile.longest_streak = max(profile.longest_streak, profile.current_streak)
            else:
                profile.current_streak = 0

            profile.average_impact = (
                profile.average_impact * (1 - weight) + abs(attribute_impact) * weight
            )
            record.was_winner = was_winner
            record.attribute_impact = attribute_impact
            return profile

        self._update_profile(participant_id, mutate)
        self._invalidate_stats(participant_id)
        self.evaluate(participant_id, now)
        return self.get_profile(participant_id)

    # --- achievements ---

    def award_achievement(
        self, participant_id: str, achievement_id: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Add an achievement to the profile at most once.
        Returns True if this call added it.
        """
        definition = self._by_id.get(achievement_id)
        if definition is None:
            raise ValidationError(f"Unknown achievement: {achievement_id}")
        now = now or self._clock()

        claimed = self.records.kv.set_if_absent(
            keys.achievement_claim(participant_id, achievement_id),
            now.isoformat(),
            self.config.profile_ttl_seconds,
        )
        added = []

        def mutate(profile: ParticipantProfile) -> Optional[ParticipantProfile]:
            added.clear()
            if profile.has_achievement(achievement_id):
                return None
            profile.achievements.append(
                Achievement(
                    id=definition.id,
                    name=definition.name,
                    description=definition.description,
                    category=definition.category,
                    unlocked_at=now,
                )
            )
            added.append(True)
            return profile

        self._update_profile(participant_id, mutate)
        if added:
            self._invalidate_stats(participant_id)
            if claimed:
                logger.info("{} unlocked achievement {}", participant_id, achievement_id)
            else:
                logger.warning("Healed achievement {} missing from {}'s profile", achievement_id, participant_id)
        return bool(added)

    def evaluate(self, participant_id: str, now: Optional[datetime] = None) -> List[Achievement]:
        """Award every catalog achievement the profile now qualifies for. Returns the new ones."""
        now = now or self._clock()
        profile = self.get_profile(participant_id)
        if profile is None:
            return []
        stats = compute_stats(profile, now)

        newly = [
            definition
            for definition in self.catalog
            if not profile.has_achievement(definition.id) and is_unlocked(definition, profile, stats)
        ]
        awarded = [d.id for d in newly if self.award_achievement(participant_id, d.id, now)]
        if not awarded:
            return []
        profile = self.get_profile(participant_id)
        return [a for a in profile.achievements if a.id in awarded]
