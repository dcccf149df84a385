"""Tests for core data models."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from lore_kernel.models import (
    ATTRIBUTE_NAMES,
    Decision,
    DecisionOption,
    EngineConfig,
    ParticipantProfile,
    VoteHistoryRecord,
    VoteResult,
    VoteTally,
    WorldAttributeEffects,
    WorldAttributes,
    WorldState,
)


class TestWorldAttributes:
    def test_defaults_are_neutral(self):
        attributes = WorldAttributes()
        assert attributes.as_dict() == {name: 0 for name in ATTRIBUTE_NAMES}

    def test_bounds(self):
        WorldAttributes(stability=10, curiosity=-10)
        with pytest.raises(ValidationError):
            WorldAttributes(stability=11)
        with pytest.raises(ValidationError):
            WorldAttributes(survival=-11)


class TestWorldAttributeEffects:
    def test_items_skip_unset(self):
        effects = WorldAttributeEffects(stability=2, reputation=-1)
        assert effects.items() == [("stability", 2), ("reputation", -1)]

    def test_magnitude_and_zero(self):
        assert WorldAttributeEffects(stability=2, curiosity=-3).magnitude() == 5
        assert WorldAttributeEffects().is_zero() is True
        assert WorldAttributeEffects(survival=0).is_zero() is True
        assert WorldAttributeEffects(survival=1).is_zero() is False

    def test_out_of_range_effects_are_representable(self):
        # Range checks belong to the effect engine.
        assert WorldAttributeEffects(stability=7).stability == 7


class TestDecision:
    def _option(self, option_id: str) -> DecisionOption:
        return DecisionOption(id=option_id, text=f"To {option_id}")

    def test_requires_two_options(self):
        with pytest.raises(ValidationError):
            Decision(
                id="d1",
                title="Lonely",
                options=[self._option("a")],
                created_at=datetime(2025, 1, 1),
            )

    def test_option_lookup(self):
        decision = Decision(
            id="d1",
            title="Fork",
            options=[self._option("a"), self._option("b")],
            created_at=datetime(2025, 1, 1),
        )
        assert decision.option_ids() == ["a", "b"]
        assert decision.get_option("b").text == "To b"
        assert decision.get_option("c") is None
        assert decision.status.value == "open"


class TestVoteModels:
    def test_tally_count_for_missing_option(self):
        tally = VoteTally(decision_id="d1", option_votes={"a": 2}, total_votes=2)
        assert tally.count_for("a") == 2
        assert tally.count_for("b") == 0

    def test_participation_rate_bounds(self):
        option = DecisionOption(id="a", text="To a")
        with pytest.raises(ValidationError):
            VoteResult(
                decision_id="d1",
                winning_option=option,
                tally=VoteTally(decision_id="d1"),
                attribute_changes=WorldAttributeEffects(),
                participation_rate=1.5,
                summary="",
                resolved_at=datetime(2025, 1, 1),
            )


class TestParticipantProfile:
    def test_find_vote_returns_latest_index(self):
        now = datetime(2025, 1, 1)
        profile = ParticipantProfile(
            participant_id="alice",
            join_date=now,
            last_vote_date=now,
            vote_history=[
                VoteHistoryRecord(decision_id="d1", option_id="a", timestamp=now),
                VoteHistoryRecord(decision_id="d2", option_id="b", timestamp=now),
            ],
        )
        assert profile.find_vote("d2") == 1
        assert profile.find_vote("d9") is None
        assert profile.has_achievement("first_vote") is False

    def test_counters_cannot_go_negative(self):
        with pytest.raises(ValidationError):
            ParticipantProfile(
                participant_id="alice",
                total_votes=-1,
                join_date=datetime(2025, 1, 1),
                last_vote_date=datetime(2025, 1, 1),
            )


class TestWorldState:
    def test_version_starts_at_one(self):
        state = WorldState(last_updated=datetime(2025, 1, 1))
        assert state.version == 1
        with pytest.raises(ValidationError):
            WorldState(version=0, last_updated=datetime(2025, 1, 1))

    def test_round_trip_json(self):
        state = WorldState(
            attributes=WorldAttributes(stability=3),
            lore_log=["Founded."],
            last_updated=datetime(2025, 1, 1),
        )
        restored = WorldState.model_validate_json(state.model_dump_json())
        assert restored == state


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.world.history_cap == 100
        assert config.world.lore_log_cap == 50
        assert config.achievements.impact_weight == 0.1
        assert config.voting.fallback_option_index is None

    def test_configs_are_independent(self):
        first = EngineConfig()
        first.cache.enabled = False
        assert EngineConfig().cache.enabled is True
