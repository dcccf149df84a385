"""
Lore Kernel API — FastAPI endpoints.

Exposes the engine's upward contract over HTTP:
- Decisions and voting
- World state, history and trends
- Participant stats and leaderboards
- Resolution cycle control
- Cache statistics
"""

from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from lore_kernel.config.settings import Settings
from lore_kernel.context import EngineContext
from lore_kernel.effects import engine as effects_engine
from lore_kernel.errors import (
    CorruptedRecordError,
    DuplicateVoteError,
    EngineError,
    LeaseUnavailableError,
    NotFoundError,
    NoVotesCastError,
    StoreUnavailableError,
    ValidationError,
)
from lore_kernel.models.decision import Decision, DecisionOption
from lore_kernel.models.leaderboard import LeaderboardCategory, TimeFrame
from lore_kernel.models.vote import Vote
from lore_kernel.models.world import WorldAttributeEffects
from lore_kernel.telemetry.logging import setup_logging


# --- Request/Response Models ---

class DecisionCreateRequest(BaseModel):
    id: str
    title: str
    scenario: str = ""
    theme: Optional[str] = None
    options: List[DecisionOption]
    expires_at: Optional[datetime] = None


class VoteRequest(BaseModel):
    participant_id: str
    option_id: str
    decision_id: Optional[str] = None
    source: str = "web_interface"


class BatchVoteRequest(BaseModel):
    votes: List[VoteRequest]


class AttributeUpdateRequest(BaseModel):
    effects: WorldAttributeEffects
    lore_entry: Optional[str] = None


class LoreRequest(BaseModel):
    entry: str


class CycleTriggerRequest(BaseModel):
    decision_id: Optional[str] = None
    eligible_population: Optional[int] = None
    lore_entry: Optional[str] = None


# --- Error mapping ---

ERROR_STATUS = (
    (NotFoundError, 404),
    (DuplicateVoteError, 409),
    (NoVotesCastError, 409),
    (LeaseUnavailableError, 409),
    (ValidationError, 422),
    (CorruptedRecordError, 500),
    (StoreUnavailableError, 503),
)


def status_for(exc: EngineError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


# --- Application Factory ---

def create_app(context: Optional[EngineContext] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Lore Kernel API",
        description="Collective decision resolution and world evolution engine",
        version="0.1.0",
    )

    ctx = context or EngineContext.create()
    app.state.context = ctx

    @app.exception_handler(EngineError)
    async def handle_engine_error(request: Request, exc: EngineError):
        body = {
            "error": type(exc).__name__,
            "detail": exc.message,
            "retryable": exc.retryable,
        }
        if isinstance(exc, ValidationError):
            body["errors"] = exc.errors
        return JSONResponse(status_code=status_for(exc), content=body)

    # === DECISIONS ===

    @app.post("/decisions")
    def open_decision(req: DecisionCreateRequest):
        """Open a new decision and make it current."""
        decision = Decision(
            id=req.id,
            title=req.title,
            scenario=req.scenario,
            theme=req.theme,
            options=req.options,
            created_at=ctx.clock(),
            expires_at=req.expires_at,
        )
        return ctx.ledger.open_decision(decision).model_dump(mode="json")

    @app.get("/decisions/current")
    def get_current_decision():
        return ctx.ledger.get_current_decision().model_dump(mode="json")

    @app.get("/decisions/{decision_id}")
    def get_decision(decision_id: str):
        return ctx.ledger.get_decision(decision_id).model_dump(mode="json")

    @app.get("/decisions/{decision_id}/tally")
    def get_tally(decision_id: str):
        return ctx.ledger.get_tally(decision_id).model_dump(mode="json")

    @app.get("/decisions/{decision_id}/breakdown")
    def get_breakdown(decision_id: str):
        return ctx.ledger.vote_breakdown(decision_id).model_dump(mode="json")

    @app.get("/decisions/{decision_id}/result")
    def get_result(decision_id: str):
        result = ctx.ledger.get_result(decision_id)
        if result is None:
            raise NotFoundError(f"Decision {decision_id} has not been resolved")
        return result.model_dump(mode="json")

    # === VOTING ===

    @app.post("/votes")
    def submit_vote(req: VoteRequest):
        """Cast one vote. 409 if the participant already voted on this decision."""
        vote = ctx.submit_vote(
            req.participant_id,
            req.option_id,
            decision_id=req.decision_id,
            source=req.source,
        )
        return vote.model_dump(mode="json")

    @app.post("/votes/batch")
    def submit_batch(req: BatchVoteRequest):
        now = ctx.clock()
        current_id = None
        votes = []
        for item in req.votes:
            decision_id = item.decision_id
            if decision_id is None:
                current_id = current_id or ctx.ledger.get_current_decision().id
                decision_id = current_id
            votes.append(Vote(
                participant_id=item.participant_id,
                decision_id=decision_id,
                option_id=item.option_id,
                timestamp=now,
                source=item.source,
            ))
        return ctx.ledger.submit_batch(votes).model_dump(mode="json")

    # === WORLD STATE ===

    @app.get("/world/state")
    def get_world_state():
        """Current world attributes, lore and version."""
        return ctx.get_current_state().model_dump(mode="json")

    @app.post("/world/attributes")
    def update_attributes(req: AttributeUpdateRequest):
        """Manual attribute update (admin)."""
        return ctx.update_attributes(req.effects, req.lore_entry).model_dump(mode="json")

    @app.post("/world/lore")
    def add_lore(req: LoreRequest):
        return ctx.world.add_lore_entry(req.entry).model_dump(mode="json")

    @app.get("/world/history")
    def get_history(page: int = 1, page_size: int = 20):
        return ctx.world.get_paginated_history(page, page_size).model_dump(mode="json")

    @app.get("/world/trends")
    def get_trends():
        return {
            name: trend.model_dump(mode="json")
            for name, trend in ctx.world.get_attribute_trends().items()
        }

    @app.get("/world/summary")
    def get_summary():
        attributes = ctx.get_current_state().attributes
        return {
            "summary": effects_engine.summarize_attributes(attributes).model_dump(mode="json"),
            "critical": effects_engine.critical_state(attributes).model_dump(mode="json"),
            "suggested_effects": effects_engine.suggest_balancing_effects(attributes).model_dump(
                mode="json", exclude_none=True
            ),
        }

    @app.post("/world/repair")
    def repair_world():
        return {"repaired": ctx.world.repair()}

    # === PARTICIPANTS ===

    @app.get("/participants/{participant_id}/stats")
    def get_participant_stats(participant_id: str):
        return ctx.get_participant_stats(participant_id).model_dump(mode="json")

    @app.get("/participants/{participant_id}/achievements")
    def get_achievements(participant_id: str):
        profile = ctx.achievements.get_profile(participant_id)
        if profile is None:
            raise NotFoundError(f"No profile for participant {participant_id}")
        return [a.model_dump(mode="json") for a in profile.achievements]

    @app.get("/participants/{participant_id}/rank")
    def get_participant_rank(
        participant_id: str,
        category: LeaderboardCategory = LeaderboardCategory.TOTAL_VOTES,
        timeframe: TimeFrame = TimeFrame.ALL_TIME,
    ):
        rank = ctx.get_participant_rank(participant_id, category, timeframe)
        if rank is None:
            raise NotFoundError(f"Participant {participant_id} is not ranked")
        return rank.model_dump(mode="json")

    # === LEADERBOARDS ===

    @app.get("/leaderboards/stats")
    def get_leaderboard_stats():
        return ctx.leaderboard.leaderboard_stats().model_dump(mode="json")

    @app.get("/leaderboards/{category}")
    def get_leaderboard(
        category: LeaderboardCategory,
        timeframe: TimeFrame = TimeFrame.ALL_TIME,
        limit: Optional[int] = None,
    ):
        return ctx.get_leaderboard(category, timeframe, limit).model_dump(mode="json")

    # === RESOLUTION CYCLE ===

    @app.post("/cycle/trigger")
    def trigger_cycle(req: CycleTriggerRequest):
        """Force a resolution cycle."""
        report = ctx.run_cycle(req.decision_id, req.eligible_population, req.lore_entry)
        return report.model_dump(mode="json")

    @app.get("/cycle/next")
    def next_cycle():
        loop = ctx.cycle_loop()
        return {"schedule": loop.schedule, "next_run": loop.next_run().isoformat()}

    @app.get("/stats/global")
    def get_global_stats():
        return ctx.cycle.global_stats().model_dump(mode="json")

    # === CACHE ===

    @app.get("/cache/stats")
    def get_cache_stats():
        return ctx.cache.stats().model_dump(mode="json")

    @app.post("/cache/clear")
    def clear_cache():
        return {"invalidated": ctx.cache.clear()}

    return app


def create_app_from_settings(settings: Optional[Settings] = None) -> FastAPI:
    """Production entry point: logging and a SQLite-backed context from the environment."""
    settings = settings or Settings()
    setup_logging(settings.log_level, settings.log_dir)
    return create_app(EngineContext.from_settings(settings))
