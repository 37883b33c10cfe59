from typing import Optional

from fastapi import Header

from app.core.config import settings


async def get_actor(x_actor: Optional[str] = Header(None, max_length=100)) -> str:
    """Name recorded in created_by / received_by columns. Falls back to the system actor."""
    return (x_actor or "").strip() or settings.system_actor
