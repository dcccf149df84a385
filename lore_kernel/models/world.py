"""World Model — the four bounded civilization traits and their audit trail."""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

ATTRIBUTE_NAMES: Tuple[str, ...] = ("stability", "curiosity", "survival", "reputation")

ATTRIBUTE_MIN = -10
ATTRIBUTE_MAX = 10
EFFECT_MIN = -3
EFFECT_MAX = 3


class WorldAttributes(BaseModel):
    """Four scalar traits of the shared world. Each stays within [-10, 10]."""

    stability: int = Field(default=0, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)   # stable vs. chaotic
    curiosity: int = Field(default=0, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)   # exploratory vs. conservative
    survival: int = Field(default=0, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)    # struggling vs. thriving
    reputation: int = Field(default=0, ge=ATTRIBUTE_MIN, le=ATTRIBUTE_MAX)  # how others perceive the world

    def as_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in ATTRIBUTE_NAMES}


class WorldAttributeEffects(BaseModel):
    """
    Signed deltas an outcome applies to the attributes.

    Bounds ([-3, 3]) are enforced by the effect engine, not by the model,
    so out-of-range effects surface as engine ValidationErrors.
    """

    stability: Optional[int] = None
    curiosity: Optional[int] = None
    survival: Optional[int] = None
    reputation: Optional[int] = None

    def items(self) -> List[Tuple[str, int]]:
        """Attribute/effect pairs that are actually set."""
        return [
            (name, getattr(self, name))
            for name in ATTRIBUTE_NAMES
            if getattr(self, name) is not None
        ]

    def is_zero(self) -> bool:
        return all(value == 0 for _, value in self.items())

    def magnitude(self) -> int:
        """Sum of absolute deltas; used as a voter's impact."""
        return sum(abs(value) for _, value in self.items())


class WorldHistoryEntry(BaseModel):
    """Audit record of one world transition. Never mutated after creation."""

    timestamp: datetime
    decision_id: str = ""
    version: int                            # World version produced by this transition
    attributes_before: WorldAttributes
    attributes_after: WorldAttributes
    changes: WorldAttributeEffects          # Actual (possibly truncated) effects
    lore_entry: str = ""


class WorldHistoryLog(BaseModel):
    """Bounded, append-only list of transitions, oldest first."""

    entries: List[WorldHistoryEntry] = []


class HistoryPage(BaseModel):
    entries: List[WorldHistoryEntry]
    page: int
    page_size: int
    total: int
    has_more: bool


class WorldState(BaseModel):
    """The single versioned world record."""

    attributes: WorldAttributes = WorldAttributes()
    lore_log: List[str] = []
    version: int = Field(default=1, ge=1)
    last_updated: datetime
    applied_decisions: List[str] = []       # Recent decision ids, for idempotent re-application
    last_entry: Optional[WorldHistoryEntry] = None  # Last transition, for history repair
    checksum: str = ""


class AttributeTrend(BaseModel):
    attribute: str
    trend: str                              # "rising" | "falling" | "stable"
    strength: float = Field(ge=0, le=1)
    total_change: int


class CriticalAttribute(BaseModel):
    attribute: str
    value: int
    severity: str                           # "high" | "extreme"


class CriticalStateReport(BaseModel):
    is_critical: bool
    critical_attributes: List[CriticalAttribute] = []
    recommendations: List[str] = []


class AttributeStatus(BaseModel):
    status: str
    color: str
    description: str


class AttributeSummary(BaseModel):
    overall: str
    strongest: Tuple[str, int]
    weakest: Tuple[str, int]
    balance_score: float
