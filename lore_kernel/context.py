"""
Engine context — wires every component around one key-value store.

One context per process (or per test). Nothing in the engine is a module-level
singleton; cache counters live here too.
"""

from datetime import datetime
from typing import Callable, Optional

from loguru import logger

from lore_kernel.achievements.engine import AchievementEngine
from lore_kernel.cache.layer import CacheLayer
from lore_kernel.config.settings import Settings
from lore_kernel.cycle.loop import CycleLoop, ResolutionCycle
from lore_kernel.errors import EngineError
from lore_kernel.leaderboard.ranker import LeaderboardRanker
from lore_kernel.models.cache import CacheStats
from lore_kernel.models.config import EngineConfig
from lore_kernel.models.cycle import CycleReport
from lore_kernel.models.decision import Decision
from lore_kernel.models.leaderboard import (
    LeaderboardCategory,
    LeaderboardData,
    TimeFrame,
    UserRankInfo,
)
from lore_kernel.models.profile import ParticipantStats
from lore_kernel.models.vote import Vote, VoteResult
from lore_kernel.models.world import WorldAttributeEffects, WorldState
from lore_kernel.storage import keys
from lore_kernel.storage.kv import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from lore_kernel.storage.records import RecordStore
from lore_kernel.votes.ledger import VoteLedger
from lore_kernel.world_state.store import WorldStateStore


class EngineContext:
    """All engine components, sharing one store, one config and one clock."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.clock = clock

        self.records = RecordStore(store)
        self.cache_stats = CacheStats(last_reset=clock())
        self.cache = CacheLayer(self.records, self.config.cache, self.cache_stats, clock)
        self.world = WorldStateStore(self.records, self.config.world, self.cache, clock)
        self.ledger = VoteLedger(self.records, self.config.voting, self.cache, clock)
        self.achievements = AchievementEngine(
            self.records, self.config.achievements, self.cache, clock=clock
        )
        self.leaderboard = LeaderboardRanker(self.records, self.config.leaderboard, clock)
        self.cycle = ResolutionCycle(
            self.records,
            self.ledger,
            self.world,
            self.achievements,
            self.leaderboard,
            self.cache,
            self.config,
            clock,
        )

    @classmethod
    def create(
        cls,
        config: Optional[EngineConfig] = None,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> "EngineContext":
        """Build a context (in-memory store by default) and seed the world."""
        context = cls(store or InMemoryKeyValueStore(), config, clock)
        context.world.initialize()
        return context

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineContext":
        store = SQLiteKeyValueStore(settings.db_path, settings.store_timeout_seconds)
        logger.info("Using key-value store at {}", settings.db_path)
        return cls.create(settings.to_engine_config(), store)

    def cycle_loop(self, **kwargs) -> CycleLoop:
        return CycleLoop(self.cycle, clock=self.clock, **kwargs)

    # --- upward contract ---

    def submit_vote(
        self,
        participant_id: str,
        option_id: str,
        decision_id: Optional[str] = None,
        source: str = "web_interface",
        now: Optional[datetime] = None,
    ) -> Vote:
        """
        Record a vote on a decision (the current one by default).
        Profile and leaderboard bookkeeping is best-effort; the vote stands either way.
        """
        now = now or self.clock()
        if decision_id is None:
            decision_id = self.ledger.get_current_decision().id
        vote = self.ledger.submit_vote(participant_id, decision_id, option_id, now=now, source=source)

        try:
            option = self.ledger.get_decision(decision_id).get_option(option_id)
            self.achievements.record_vote(
                participant_id, decision_id, option_id, now=now, effects=option.attribute_effects
            )
            stats = self.achievements.get_participant_stats(participant_id, use_cache=False)
            self.leaderboard.update_participant(stats, now)
        except EngineError as exc:
            logger.warning("Profile bookkeeping for {} failed: {}", participant_id, exc.message)
        return vote

    def run_cycle(
        self,
        decision_id: Optional[str] = None,
        eligible_population: Optional[int] = None,
        lore_entry: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CycleReport:
        return self.cycle.run(decision_id, eligible_population, lore_entry, now)

    def resolve(
        self,
        decision_id: Optional[str] = None,
        eligible_population: Optional[int] = None,
        lore_entry: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VoteResult:
        """Resolve a decision and evolve the world. Re-running returns the stored result."""
        return self.run_cycle(decision_id, eligible_population, lore_entry, now).result

    def get_current_state(self) -> WorldState:
        return self.world.get_current_state()

    def update_attributes(
        self, effects: WorldAttributeEffects, lore_entry: Optional[str] = None
    ) -> WorldState:
        return self.world.update_attributes(effects, lore_entry=lore_entry)

    def get_scene(self, decision_id: str, render: Callable[[Decision], str]) -> str:
        """Rendered scene text for a decision, cached until the decision is resolved."""
        return self.cache.get_or_set(
            keys.cache_scene(decision_id),
            lambda: render(self.ledger.get_decision(decision_id)),
            self.config.cache.scene_ttl,
            type_=str,
        )

    def get_participant_stats(self, participant_id: str) -> ParticipantStats:
        return self.achievements.get_participant_stats(participant_id)

    def get_leaderboard(
        self,
        category: LeaderboardCategory = LeaderboardCategory.TOTAL_VOTES,
        timeframe: TimeFrame = TimeFrame.ALL_TIME,
        limit: Optional[int] = None,
    ) -> LeaderboardData:
        return self.leaderboard.get_leaderboard(category, timeframe, limit)

    def get_participant_rank(
        self,
        participant_id: str,
        category: LeaderboardCategory = LeaderboardCategory.TOTAL_VOTES,
        timeframe: TimeFrame = TimeFrame.ALL_TIME,
    ) -> Optional[UserRankInfo]:
        return self.leaderboard.get_user_rank(participant_id, category, timeframe)
