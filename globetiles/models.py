from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class ApiUsageStat(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(index=True, unique=True, description="Endpoint host the requests went to")
    request_count: int = Field(default=0)
    last_used_at: Optional[datetime] = Field(default=None)
