"""
Resolution Cycle — resolves the current decision and evolves the world.

Pipeline (every step idempotent, so a re-run after a crash or lease expiry is safe):
  close voting → recount from the voter index → resolve (or reload the
  stored result) → world update → voter profiles → leaderboards →
  cache invalidation → mark resolved.

Achievement and leaderboard failures are logged and counted; they never
undo the stored result or the world transition.
Losing the lease between steps aborts the run; the next run replays the rest.
"""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from croniter import croniter
from loguru import logger

from lore_kernel.achievements.engine import AchievementEngine
from lore_kernel.cache.layer import CacheLayer
from lore_kernel.cycle.lease import Lease
from lore_kernel.errors import (
    EngineError,
    LeaseUnavailableError,
    NotFoundError,
    NoVotesCastError,
)
from lore_kernel.leaderboard.ranker import LeaderboardRanker
from lore_kernel.models.config import EngineConfig
from lore_kernel.models.cycle import CycleReport
from lore_kernel.models.decision import Decision
from lore_kernel.models.profile import ParticipantStats
from lore_kernel.models.vote import GlobalStats, VoteResult
from lore_kernel.models.world import WorldAttributeEffects, WorldState
from lore_kernel.storage import keys
from lore_kernel.storage.records import RecordStore
from lore_kernel.votes.ledger import VoteLedger
from lore_kernel.world_state.store import WorldStateStore


class ResolutionCycle:
    """One lease-guarded pass of the resolution pipeline."""

    def __init__(
        self,
        records: RecordStore,
        ledger: VoteLedger,
        world: WorldStateStore,
        achievements: AchievementEngine,
        leaderboard: LeaderboardRanker,
        cache: Optional[CacheLayer] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.records = records
        self.ledger = ledger
        self.world = world
        self.achievements = achievements
        self.leaderboard = leaderboard
        self.cache = cache
        self.config = config or EngineConfig()
        self._clock = clock

    def run(
        self,
        decision_id: Optional[str] = None,
        eligible_population: Optional[int] = None,
        lore_entry: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CycleReport:
        """
        Resolve a decision (the current one by default).
        Raises LeaseUnavailableError if another cycle is running.
        """
        now = now or self._clock()
        with Lease(self.records.kv, self.config.cycle.lease_seconds) as lease:
            return self._run_locked(lease, decision_id, eligible_population, lore_entry, now)

    def _run_locked(
        self,
        lease: Lease,
        decision_id: Optional[str],
        eligible_population: Optional[int],
        lore_entry: Optional[str],
        now: datetime,
    ) -> CycleReport:
        if decision_id is None:
            decision_id = self.ledger.get_current_decision(use_cache=False).id
        report_id = f"cycle_{uuid4().hex[:12]}"
        logger.info("Resolution cycle {} started for {}", report_id, decision_id)

        decision = self.ledger.close_decision(decision_id)
        stored = self.ledger.get_result(decision_id)
        replayed = stored is not None
        if stored is None:
            self.ledger.rebuild_tally(decision_id)
            result = self.ledger.record_result(
                self.ledger.resolve(decision_id, eligible_population, now)
            )
        else:
            result = stored
            logger.info("Decision {} already resolved, replaying remaining steps", decision_id)

        state = self.world.update_attributes(
            result.attribute_changes,
            lore_entry=lore_entry or result.summary,
            decision_id=decision_id,
            now=now,
        )
        self._keep_lease(lease, decision_id)

        report = CycleReport(
            cycle_id=report_id,
            decision_id=decision_id,
            result=result,
            world_version=state.version,
            replayed=replayed,
            started_at=now,
        )

        participants = self._process_voters(decision, result, now, report)
        self._keep_lease(lease, decision_id)
        self._update_leaderboards(participants, now, report)
        report.cache_keys_invalidated = self._invalidate_caches(decision_id)

        self.ledger.mark_resolved(decision_id)
        self.ledger.clear_current(decision_id)
        self._update_global_stats(result, state, now)

        report.finished_at = self._clock()
        logger.info(
            "Resolution cycle {} finished: {} wins, world v{}, {} voters ({} failed)",
            report_id, result.winning_option.id, state.version,
            report.voters_processed, report.voter_failures,
        )
        return report

    def _keep_lease(self, lease: Lease, decision_id: str) -> None:
        """Renew the lease, or stop here if another cycle has taken it over."""
        if not lease.renew():
            raise LeaseUnavailableError(
                f"Lease lost while resolving {decision_id}; remaining steps left to the next run",
                key=lease.key,
            )

    def _process_voters(
        self, decision: Decision, result: VoteResult, now: datetime, report: CycleReport
    ) -> List[ParticipantStats]:
        winning_id = result.winning_option.id
        participants = []
        for vote in self.ledger.iter_voters(decision.id):
            option = decision.get_option(vote.option_id)
            impact = option.attribute_effects.magnitude() if option else 0
            try:
                self.achievements.record_vote(
                    vote.participant_id,
                    decision.id,
                    vote.option_id,
                    now=vote.timestamp,
                    effects=option.attribute_effects if option else None,
                )
                self.achievements.process_outcome(
                    vote.participant_id,
                    decision.id,
                    was_winner=vote.option_id == winning_id,
                    attribute_impact=impact,
                    now=now,
                )
                participants.append(
                    self.achievements.get_participant_stats(vote.participant_id, use_cache=False)
                )
                report.voters_processed += 1
            except EngineError as exc:
                report.voter_failures += 1
                logger.warning("Outcome for {} on {} failed: {}", vote.participant_id, decision.id, exc.message)
        return participants

    def _update_leaderboards(
        self, participants: List[ParticipantStats], now: datetime, report: CycleReport
    ) -> None:
        for stats in participants:
            try:
                self.leaderboard.update_participant(stats, now)
            except EngineError as exc:
                report.leaderboard_failures += 1
                logger.warning("Leaderboard update for {} failed: {}", stats.participant_id, exc.message)

    def _invalidate_caches(self, decision_id: str) -> int:
        if self.cache is None:
            return 0
        prefixes = (
            keys.cache_tally(decision_id),
            keys.cache_scene(decision_id),
            keys.CACHE_WORLD_STATE,
            keys.CACHE_WORLD_TRENDS,
            keys.CACHE_CURRENT_DECISION,
            keys.CACHE_PROFILE_PREFIX,
        )
        return sum(self.cache.invalidate(prefix) for prefix in prefixes)

    def _update_global_stats(self, result: VoteResult, state: WorldState, now: datetime) -> None:
        entry = state.last_entry
        if entry is not None and entry.decision_id == result.decision_id:
            actual = entry.changes
        else:
            actual = WorldAttributeEffects()

        def mutate(stats: GlobalStats) -> Optional[GlobalStats]:
            if result.decision_id in stats.processed_decisions:
                return None
            processed = stats.decisions_processed
            stats.average_participation = round(
                (stats.average_participation * processed + result.participation_rate) / (processed + 1),
                4,
            )
            stats.decisions_processed = processed + 1
            stats.total_votes_cast += result.tally.total_votes
            option_key = result.winning_option.text[:50]
            stats.popular_options[option_key] = stats.popular_options.get(option_key, 0) + 1
            for attribute, change in actual.items():
                stats.attribute_changes[attribute] = stats.attribute_changes.get(attribute, 0) + change
            stats.processed_decisions = (
                stats.processed_decisions + [result.decision_id]
            )[-self.config.cycle.processed_decisions_cap:]
            stats.last_decision_id = result.decision_id
            stats.last_updated = now
            return stats

        try:
            self.records.update(keys.GLOBAL_STATS, GlobalStats, mutate, default_factory=GlobalStats)
        except EngineError as exc:
            logger.warning("Global stats update failed for {}: {}", result.decision_id, exc.message)

    def global_stats(self) -> GlobalStats:
        return self.records.get_or_default(keys.GLOBAL_STATS, GlobalStats, GlobalStats)


class CycleLoop:
    """
    Runs resolution cycles on a cron schedule.
    After each successful cycle, `next_decision` (if given) supplies the next decision to open.
    """

    def __init__(
        self,
        cycle: ResolutionCycle,
        schedule: Optional[str] = None,
        poll_interval_seconds: Optional[int] = None,
        next_decision: Optional[Callable[[datetime], Decision]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.cycle = cycle
        self.schedule = schedule or cycle.config.cycle.schedule
        self.poll_interval_seconds = poll_interval_seconds or cycle.config.cycle.poll_interval_seconds
        self.next_decision = next_decision
        self._clock = clock
        self._running = False
        if not croniter.is_valid(self.schedule):
            raise ValueError(f"Invalid cron schedule: {self.schedule}")

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        return croniter(self.schedule, after or self._clock()).get_next(datetime)

    def run_once(self, now: Optional[datetime] = None) -> Optional[CycleReport]:
        """Run one cycle. Expected non-events (nothing to resolve, lease busy) return None."""
        now = now or self._clock()
        try:
            report = self.cycle.run(now=now)
        except NotFoundError:
            logger.info("No active decision to resolve")
            return None
        except LeaseUnavailableError:
            logger.warning("Resolution cycle already running elsewhere, skipping")
            return None
        except NoVotesCastError as exc:
            logger.warning("{}; decision left unresolved", exc.message)
            return None

        if self.next_decision is not None:
            decision = self.next_decision(now)
            self.cycle.ledger.open_decision(decision)
        return report

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the cycle loop asynchronously until stop_event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        next_at = self.next_run()
        logger.info("Cycle loop started, next resolution at {}", next_at.isoformat())
        try:
            while not stop_event.is_set():
                now = self._clock()
                if now >= next_at:
                    self.run_once(now)
                    next_at = self.next_run(now)
                    logger.info("Next resolution at {}", next_at.isoformat())
                    continue
                timeout = min(self.poll_interval_seconds, (next_at - now).total_seconds())
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
