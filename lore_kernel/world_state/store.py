"""
World State Store — the single versioned record of the shared world.

Updated by: Resolution outcomes (bounded attribute effects + lore)
Queried by: Resolution Cycle, API, trend displays

Behavioral Contract:
- The world is ONE record (attributes, lore log, version, checksum) written
  with compare-and-set; concurrent writers retry, none is lost.
- Version strictly increases on every successful mutation.
- History is a separate capped record. A transition is appended only when
  some actual effect is non-zero; a missing append is healed by repair().
- Re-applying an already applied decision returns the state unchanged.
- A corrupt or tampered world record raises; it is never silently reset.
"""

import hashlib
import json
from datetime import datetime
from typing import Callable, Dict, List, Optional

from loguru import logger

from lore_kernel.cache.layer import CacheLayer
from lore_kernel.effects import engine as effects_engine
from lore_kernel.errors import CorruptedRecordError, ValidationError
from lore_kernel.models.config import WorldConfig
from lore_kernel.models.world import (
    AttributeTrend,
    HistoryPage,
    WorldAttributeEffects,
    WorldAttributes,
    WorldHistoryEntry,
    WorldHistoryLog,
    WorldState,
)
from lore_kernel.storage import keys
from lore_kernel.storage.records import RecordStore

SEED_LORE = (
    "In the beginning, your people settled in this mysterious land, "
    "ready to face whatever challenges await.",
    "The community looks to you for guidance as they navigate the unknown paths ahead.",
    "Every decision shapes the destiny of your world and the stories that will be "
    "told for generations.",
)

# last_updated of the synthetic default served before the world is initialized
UNSEEDED_TIMESTAMP = datetime(1970, 1, 1)


def compute_checksum(state: WorldState) -> str:
    """SHA-256 over the canonical JSON of the state, checksum field excluded."""
    payload = state.model_dump(mode="json", exclude={"checksum"})
    encoded = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()


def verify_checksum(state: WorldState) -> None:
    if state.checksum != compute_checksum(state):
        raise CorruptedRecordError(
            f"World state v{state.version} failed its integrity check",
            key=keys.WORLD_STATE,
        )


class WorldStateStore:
    """Persistent world state on the key-value store."""

    def __init__(
        self,
        records: RecordStore,
        config: Optional[WorldConfig] = None,
        cache: Optional[CacheLayer] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.records = records
        self.config = config or WorldConfig()
        self.cache = cache
        self._clock = clock

    def _default_state(self, now: Optional[datetime] = None) -> WorldState:
        state = WorldState(
            attributes=WorldAttributes(),
            lore_log=list(SEED_LORE),
            version=1,
            last_updated=now or self._clock(),
        )
        state.checksum = compute_checksum(state)
        return state

    def _seal(self, state: WorldState) -> WorldState:
        state.checksum = compute_checksum(state)
        return state

    def _invalidate_cache(self) -> None:
        if self.cache is not None:
            self.cache.delete(keys.CACHE_WORLD_STATE)
            self.cache.delete(keys.CACHE_WORLD_TRENDS)

    # --- lifecycle ---

    def initialize(self) -> bool:
        """Seed the world record if absent. Returns True if this call created it."""
        created = self.records.create(keys.WORLD_STATE, self._default_state())
        if created:
            logger.info("World state initialized with default values")
        return created

    def reset(self) -> WorldState:
        """Back to defaults: zero attributes, seed lore, version 1, empty history."""
        state = self._default_state()
        self.records.put(keys.WORLD_STATE, state)
        self.records.kv.delete(keys.WORLD_HISTORY)
        self._invalidate_cache()
        logger.info("World state reset to defaults")
        return state

    # --- reads ---

    def _read_state(self) -> WorldState:
        state = self.records.get(keys.WORLD_STATE, WorldState)
        if state is None:
            logger.info("No world state stored, using defaults")
            return self._default_state(UNSEEDED_TIMESTAMP)
        verify_checksum(state)
        return state

    def get_current_state(self, use_cache: bool = True) -> WorldState:
        if self.cache is None or not use_cache:
            return self._read_state()
        return self.cache.get_or_set(
            keys.CACHE_WORLD_STATE,
            self._read_state,
            self.cache.config.world_state_ttl,
            type_=WorldState,
        )

    # --- mutations ---

    def update_attributes(
        self,
        effects: WorldAttributeEffects,
        lore_entry: Optional[str] = None,
        decision_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorldState:
        """
        Apply bounded effects in one compare-and-set write.
        Invalid effects raise ValidationError before anything is read.
        """
        effects_engine.validate_effect_limits(effects)
        now = now or self._clock()
        outcome: Dict[str, Optional[WorldHistoryEntry]] = {}

        def mutate(state: WorldState) -> Optional[WorldState]:
            verify_checksum(state)
            outcome.clear()
            if decision_id and decision_id in state.applied_decisions:
                return None

            before = state.attributes
            after, actual = effects_engine.apply_effects(before, effects)

            state.attributes = after
            if lore_entry:
                state.lore_log = (state.lore_log + [lore_entry])[-self.config.lore_log_cap:]
            state.version += 1
            state.last_updated = now
            if decision_id:
                state.applied_decisions = (
                    state.applied_decisions + [decision_id]
                )[-self.config.applied_decisions_cap:]

            if not actual.is_zero():
                state.last_entry = WorldHistoryEntry(
                    timestamp=now,
                    decision_id=decision_id or "",
                    version=state.version,
                    attributes_before=before,
                    attributes_after=after,
                    changes=actual,
                    lore_entry=lore_entry or "",
                )
                outcome["entry"] = state.last_entry
            return self._seal(state)

        state = self.records.update(
            keys.WORLD_STATE,
            WorldState,
            mutate,
            default_factory=self._default_state,
            max_retries=self.config.max_write_retries,
        )

        if "entry" not in outcome:
            if decision_id and decision_id in state.applied_decisions and state.last_entry:
                # Retry of an applied decision: make sure its transition reached history.
                logger.info("Decision {} already applied to world v{}", decision_id, state.version)
                self._append_history(state.last_entry)
            self._invalidate_cache()
            return state

        self._append_history(outcome["entry"])
        self._invalidate_cache()
        logger.info(
            "World updated to v{} ({}): {}",
            state.version, decision_id or "manual", state.attributes.as_dict(),
        )
        return state

    def add_lore_entry(self, entry: str, now: Optional[datetime] = None) -> WorldState:
        if not entry or not entry.strip():
            raise ValidationError("Lore entry must not be empty")
        now = now or self._clock()

        def mutate(state: WorldState) -> WorldState:
            verify_checksum(state)
            state.lore_log = (state.lore_log + [entry])[-self.config.lore_log_cap:]
            state.version += 1
            state.last_updated = now
            return self._seal(state)

        state = self.records.update(
            keys.WORLD_STATE,
            WorldState,
            mutate,
            default_factory=self._default_state,
            max_retries=self.config.max_write_retries,
        )
        self._invalidate_cache()
        return state

    # --- history ---

    def _append_history(self, entry: WorldHistoryEntry) -> None:
        def append(log: WorldHistoryLog) -> Optional[WorldHistoryLog]:
            if any(existing.version == entry.version for existing in log.entries):
                return None
            log.entries.append(entry)
            log.entries.sort(key=lambda e: e.version)
            log.entries = log.entries[-self.config.history_cap:]
            return log

        self.records.update(
            keys.WORLD_HISTORY,
            WorldHistoryLog,
            append,
            default_factory=WorldHistoryLog,
            max_retries=self.config.max_write_retries,
        )

    def _history_log(self) -> WorldHistoryLog:
        return self.records.get_or_default(keys.WORLD_HISTORY, WorldHistoryLog, WorldHistoryLog)

    def get_history(self, limit: int = 10) -> List[WorldHistoryEntry]:
        """Most recent transitions, newest first."""
        entries = self._history_log().entries
        return list(reversed(entries[-limit:])) if limit > 0 else []

    def get_paginated_history(self, page: int = 1, page_size: int = 20) -> HistoryPage:
        if page < 1 or page_size < 1:
            raise ValidationError("Page and page size must be positive")
        newest_first = list(reversed(self._history_log().entries))
        offset = (page - 1) * page_size
        return HistoryPage(
            entries=newest_first[offset:offset + page_size],
            page=page,
            page_size=page_size,
            total=len(newest_first),
            has_more=offset + page_size < len(newest_first),
        )

    def _compute_trends(self) -> Dict[str, AttributeTrend]:
        return effects_engine.all_trends(self._history_log().entries)

    def get_attribute_trends(self) -> Dict[str, AttributeTrend]:
        if self.cache is None:
            return self._compute_trends()
        return self.cache.get_or_set(
            keys.CACHE_WORLD_TRENDS,
            self._compute_trends,
            self.cache.config.trends_ttl,
            type_=Dict[str, AttributeTrend],
        )

    def repair(self) -> bool:
        """
        Heal a torn write: if the state's last transition never reached the
        history log, append it. Returns True if history was repaired.
        """
        state = self._read_state()
        entry = state.last_entry
        if entry is None:
            return False
        if any(existing.version == entry.version for existing in self._history_log().entries):
            return False
        logger.warning("History missing transition v{}, re-appending", entry.version)
        self._append_history(entry)
        self._invalidate_cache()
        return True
