from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class LedgerEntryAppendedEvent(BaseModel):
    event_type: Literal["ledger.entry_appended"] = "ledger.entry_appended"
    entry_id: int
    user_id: str
    transaction_type: str
    points_change: int
    points_after: int
    reference: Optional[str] = None
    occurred_at: datetime


class ReportResolvedEvent(BaseModel):
    event_type: Literal["report.resolved"] = "report.resolved"
    report_id: int
    user_id: str
    status: str
    expected_points: int
    resolution_ledger_entry_id: Optional[int] = None
    occurred_at: datetime
