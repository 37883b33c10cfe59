from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class JobStatus(BaseModel):
    name: str
    trigger: str
    is_running: bool
    run_count: int
    last_run_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_result: Optional[Any] = None
