"""Document envelope returned by every store backend."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class Document(BaseModel):
    """A versioned JSON document.

    `version` starts at 1 and increases by one on every successful
    replace; conditional writes compare against it.
    """

    id: str
    collection: str
    data: dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    expires_at: datetime | None = None
