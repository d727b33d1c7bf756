"""
Plain value types passed between the ORM layer and the recurrence engine.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .rules import RecurrenceRule


class OverrideAction(str, Enum):
    CANCELLED = 'CANCELLED'
    MODIFIED = 'MODIFIED'


@dataclass(frozen=True)
class SeriesDefinition:
    """
    A master event and its rule. ``anchor_start``/``anchor_end`` are civil
    times in ``timezone``. ``rule`` is None for a single event.
    """
    subject: str
    anchor_start: datetime
    anchor_end: datetime
    timezone: str
    rule: Optional[RecurrenceRule] = None
    series_id: Optional[str] = None
    event_id: Optional[int] = None
    calendar_id: Optional[int] = None
    description: str = ''
    location: str = ''
    is_all_day: bool = False
    status: str = 'CONFIRMED'
    rule_version: int = 1

    @property
    def is_recurring(self) -> bool:
        return self.rule is not None


@dataclass(frozen=True)
class OccurrenceOverride:
    occurrence_index: int
    action: OverrideAction
    subject: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    location: Optional[str] = None
    description: Optional[str] = None
    rule_version: Optional[int] = None


@dataclass(frozen=True)
class MaterializedOccurrence:
    subject: str
    start: datetime
    end: datetime
    civil_start: datetime
    civil_end: datetime
    description: str
    location: str
    is_all_day: bool
    status: str
    series_id: Optional[str] = None
    occurrence_index: Optional[int] = None
    event_id: Optional[int] = None
    calendar_id: Optional[int] = None
    is_exception: bool = False
    original_start: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('start', 'end', 'civil_start', 'civil_end', 'original_start'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
