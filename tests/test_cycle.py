"""Tests for the Resolution Cycle, its lease and the cron loop."""

import asyncio
from datetime import datetime

import pytest
from conftest import make_decision

from lore_kernel.context import EngineContext
from lore_kernel.cycle.lease import Lease
from lore_kernel.cycle.loop import CycleLoop
from lore_kernel.errors import (
    LeaseUnavailableError,
    NotFoundError,
    NoVotesCastError,
    ValidationError,
)
from lore_kernel.models.config import EngineConfig, VotingConfig
from lore_kernel.models.decision import DecisionStatus
from lore_kernel.models.leaderboard import LeaderboardCategory
from lore_kernel.storage import keys


def _open_and_vote(ctx, votes, decision_id="d1"):
    ctx.ledger.open_decision(make_decision(decision_id))
    for participant_id, option_id in votes.items():
        ctx.submit_vote(participant_id, option_id)


class TestLease:
    def test_exclusive(self, kv):
        first = Lease(kv, ttl_seconds=60)
        second = Lease(kv, ttl_seconds=60)
        assert first.acquire() is True
        assert second.acquire() is False
        assert second.release() is False
        assert first.held()
        assert first.release() is True
        assert second.acquire() is True

    def test_expires(self, kv, clock):
        first = Lease(kv, ttl_seconds=60)
        first.acquire()
        clock.advance(seconds=61)
        assert Lease(kv, ttl_seconds=60).acquire() is True
        assert first.renew() is False

    def test_renew_extends(self, kv, clock):
        lease = Lease(kv, ttl_seconds=60)
        lease.acquire()
        clock.advance(seconds=50)
        assert lease.renew() is True
        clock.advance(seconds=50)
        assert lease.held()

    def test_context_manager(self, kv):
        with Lease(kv, ttl_seconds=60):
            with pytest.raises(LeaseUnavailableError):
                with Lease(kv, ttl_seconds=60):
                    pass
        assert kv.get(keys.CYCLE_LEASE) is None


class TestResolutionCycle:
    def test_full_pipeline(self, ctx):
        _open_and_vote(ctx, {"alice": "opt0", "bob": "opt0", "carol": "opt1"})
        report = ctx.run_cycle()

        assert report.result.winning_option.id == "opt0"
        assert report.voters_processed == 3
        assert report.voter_failures == 0

        state = ctx.get_current_state()
        assert state.attributes.stability == 2
        assert state.attributes.curiosity == -1
        assert state.lore_log[-1] == report.result.summary
        assert report.world_version == state.version == 2

        alice = ctx.achievements.get_profile("alice")
        carol = ctx.achievements.get_profile("carol")
        assert alice.winning_votes == 1 and alice.current_streak == 1
        assert alice.average_impact == pytest.approx(0.3)
        assert carol.winning_votes == 0 and carol.current_streak == 0
        assert ctx.get_participant_stats("alice").favorite_attribute == "stability"
        assert ctx.get_participant_stats("carol").favorite_attribute == "curiosity"

        decision = ctx.ledger.get_decision("d1")
        assert decision.status == DecisionStatus.RESOLVED
        with pytest.raises(NotFoundError):
            ctx.ledger.get_current_decision()

        rank = ctx.get_participant_rank("alice", LeaderboardCategory.WINNING_PERCENTAGE)
        assert rank.score == 100.0
        assert ctx.cycle.global_stats().decisions_processed == 1

    def test_rerun_is_idempotent(self, ctx, clock):
        _open_and_vote(ctx, {"alice": "opt1", "bob": "opt1"})
        first = ctx.run_cycle("d1")
        clock.advance(hours=1)
        second = ctx.run_cycle("d1")

        assert second.replayed is True
        assert second.result == first.result
        assert ctx.get_current_state().version == first.world_version
        assert len(ctx.world.get_history(10)) == 1
        assert ctx.achievements.get_profile("alice").winning_votes == 1
        stats = ctx.cycle.global_stats()
        assert stats.decisions_processed == 1
        assert stats.total_votes_cast == 2
        assert stats.attribute_changes["curiosity"] == 3

    def test_votes_after_resolution_rejected(self, ctx):
        _open_and_vote(ctx, {"alice": "opt0"})
        ctx.run_cycle()
        with pytest.raises(ValidationError):
            ctx.submit_vote("bob", "opt0", decision_id="d1")

    def test_lease_held_elsewhere(self, ctx):
        _open_and_vote(ctx, {"alice": "opt0"})
        Lease(ctx.store, ttl_seconds=60).acquire()
        with pytest.raises(LeaseUnavailableError):
            ctx.run_cycle()
        assert ctx.ledger.get_result("d1") is None

    def test_lease_released_after_failure(self, ctx):
        ctx.ledger.open_decision(make_decision("d1"))
        with pytest.raises(NoVotesCastError):
            ctx.run_cycle()
        assert ctx.store.get(keys.CYCLE_LEASE) is None

    def test_zero_votes_with_fallback(self, kv, clock):
        ctx = EngineContext.create(EngineConfig(voting=VotingConfig(fallback_option_index=1)), kv, clock)
        ctx.ledger.open_decision(make_decision("d1"))
        report = ctx.run_cycle()
        assert report.result.fallback_used is True
        assert report.voters_processed == 0
        assert ctx.get_current_state().attributes.curiosity == 3

    def test_streak_across_cycles(self, ctx, clock):
        for i in range(3):
            _open_and_vote(ctx, {"alice": "opt0", "bob": "opt1", "carol": "opt0"}, decision_id=f"d{i}")
            ctx.run_cycle()
            clock.advance(days=1)
        alice = ctx.achievements.get_profile("alice")
        bob = ctx.achievements.get_profile("bob")
        assert alice.current_streak == 3
        assert bob.current_streak == 0
        assert ctx.get_participant_rank("alice", LeaderboardCategory.CURRENT_STREAK).rank == 1

    def test_replaying_an_older_decision_is_not_recounted(self, ctx):
        _open_and_vote(ctx, {"alice": "opt0", "bob": "opt1"}, decision_id="d1")
        ctx.run_cycle()
        _open_and_vote(ctx, {"carol": "opt1"}, decision_id="d2")
        ctx.run_cycle()

        replay = ctx.run_cycle("d1")
        assert replay.replayed is True

        stats = ctx.cycle.global_stats()
        assert stats.decisions_processed == 2
        assert stats.total_votes_cast == 3
        assert stats.processed_decisions == ["d1", "d2"]
        assert stats.popular_options == {"To take path 0": 1, "To take path 1": 1}

    def test_vote_racing_the_cycle_is_withdrawn(self, ctx, monkeypatch):
        _open_and_vote(ctx, {"alice": "opt0"})
        write = ctx.store.set_if_absent

        def resolve_first(key, value, ttl_seconds=None):
            if key == keys.vote("d1", "bob"):
                ctx.run_cycle("d1")
            return write(key, value, ttl_seconds)

        monkeypatch.setattr(ctx.store, "set_if_absent", resolve_first)
        with pytest.raises(ValidationError):
            ctx.submit_vote("bob", "opt1", decision_id="d1")
        monkeypatch.undo()

        result = ctx.ledger.get_result("d1")
        assert result.tally.total_votes == 1
        assert ctx.ledger.has_voted("d1", "bob") is False
        assert ctx.ledger.get_tally("d1", use_cache=False).total_votes == 1
        assert ctx.achievements.get_profile("bob") is None

    def test_counters_recounted_before_resolution(self, ctx):
        _open_and_vote(ctx, {"alice": "opt0"})
        ctx.store.set(keys.tally_counter("d1", "opt1"), "5")
        ctx.store.set(keys.tally_total("d1"), "6")

        report = ctx.run_cycle()
        assert report.result.winning_option.id == "opt0"
        assert report.result.tally.total_votes == 1

    def test_lost_lease_stops_the_run(self, ctx, monkeypatch):
        _open_and_vote(ctx, {"alice": "opt0"})
        update = ctx.world.update_attributes

        def taken_over(*args, **kwargs):
            state = update(*args, **kwargs)
            ctx.store.set(keys.CYCLE_LEASE, "lease_elsewhere")
            return state

        monkeypatch.setattr(ctx.world, "update_attributes", taken_over)
        with pytest.raises(LeaseUnavailableError):
            ctx.run_cycle()
        monkeypatch.undo()

        assert ctx.ledger.get_decision("d1").status == DecisionStatus.CLOSED
        assert ctx.achievements.get_profile("alice").winning_votes == 0

        ctx.store.delete(keys.CYCLE_LEASE)
        report = ctx.run_cycle("d1")
        assert report.replayed is True
        assert report.world_version == 2
        assert ctx.achievements.get_profile("alice").winning_votes == 1
        assert ctx.ledger.get_decision("d1").status == DecisionStatus.RESOLVED

    def test_resolution_drops_cached_scene(self, ctx):
        renders = []

        def render(decision):
            renders.append(decision.id)
            return f"~~ {decision.title} ~~"

        _open_and_vote(ctx, {"alice": "opt0"})
        assert ctx.get_scene("d1", render) == "~~ Decision d1 ~~"
        ctx.get_scene("d1", render)
        assert renders == ["d1"]

        ctx.run_cycle()
        ctx.get_scene("d1", render)
        assert renders == ["d1", "d1"]

    def test_world_stays_bounded_over_many_cycles(self, ctx, clock):
        for i in range(6):
            _open_and_vote(ctx, {"alice": "opt1"}, decision_id=f"d{i}")
            ctx.run_cycle()
            clock.advance(days=1)
        state = ctx.get_current_state()
        assert state.attributes.curiosity == 10
        assert state.version == 7


class TestCycleLoop:
    def test_next_run_from_cron(self, ctx, clock):
        loop = CycleLoop(ctx.cycle, schedule="0 12 * * *", clock=clock)
        assert loop.next_run(datetime(2025, 3, 3, 11, 0)) == datetime(2025, 3, 3, 12, 0)
        assert loop.next_run(datetime(2025, 3, 3, 12, 0)) == datetime(2025, 3, 4, 12, 0)

    def test_invalid_schedule(self, ctx):
        with pytest.raises(ValueError):
            CycleLoop(ctx.cycle, schedule="not a cron")

    def test_run_once_without_decision(self, ctx):
        assert ctx.cycle_loop().run_once() is None

    def test_run_once_opens_next_decision(self, ctx):
        _open_and_vote(ctx, {"alice": "opt0"})
        loop = ctx.cycle_loop(next_decision=lambda now: make_decision("d2", created_at=now))
        report = loop.run_once()
        assert report.decision_id == "d1"
        assert ctx.ledger.get_current_decision().id == "d2"

    def test_run_async_stops_on_event(self, ctx, clock):
        _open_and_vote(ctx, {"alice": "opt0"})
        clock.now = datetime(2025, 3, 3, 11, 59, 59)
        loop = ctx.cycle_loop(schedule="0 12 * * *", poll_interval_seconds=1)

        async def scenario():
            stop = asyncio.Event()
            task = asyncio.create_task(loop.run_async(stop))
            await asyncio.sleep(0.05)
            assert loop.status == "running"
            clock.advance(seconds=2)
            await asyncio.sleep(1.2)
            stop.set()
            await asyncio.wait_for(task, timeout=2)

        asyncio.run(scenario())
        assert loop.status == "stopped"
        assert ctx.ledger.get_result("d1") is not None
