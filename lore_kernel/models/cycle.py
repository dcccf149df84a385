"""Resolution cycle reports."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from lore_kernel.models.vote import VoteResult


class CycleReport(BaseModel):
    """What one resolution cycle did. Re-running a cycle reports replayed=True."""

    cycle_id: str
    decision_id: str
    result: VoteResult
    world_version: int
    replayed: bool = False
    voters_processed: int = 0
    voter_failures: int = 0
    leaderboard_failures: int = 0
    cache_keys_invalidated: int = 0
    started_at: datetime
    finished_at: Optional[datetime] = None
