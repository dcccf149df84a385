"""Decision — a presented choice and the options voters choose among."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from lore_kernel.models.world import WorldAttributeEffects


class DecisionStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DecisionOption(BaseModel):
    """One authored option and the effect vector it applies if it wins."""

    id: str
    text: str
    description: str = ""
    attribute_effects: WorldAttributeEffects = WorldAttributeEffects()
    pros: List[str] = []
    cons: List[str] = []


class Decision(BaseModel):
    """A decision prompt. Options are ordered; index order is the tie-break order."""

    id: str
    title: str
    scenario: str = ""
    theme: Optional[str] = None
    options: List[DecisionOption] = Field(min_length=2)
    created_at: datetime
    expires_at: Optional[datetime] = None
    status: DecisionStatus = DecisionStatus.OPEN

    def option_ids(self) -> List[str]:
        return [o.id for o in self.options]

    def get_option(self, option_id: str) -> Optional[DecisionOption]:
        return next((o for o in self.options if o.id == option_id), None)
