from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class Organization(BaseModel):
    id: int | None = None
    uuid: str = ""
    name: str
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None
