from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RescheduleProposalRequest(BaseModel):
    new_scheduled_at: datetime


class RescheduleResponseRequest(BaseModel):
    approve: bool
    # Obligatorio al rechazar
    reason: Optional[str] = None
