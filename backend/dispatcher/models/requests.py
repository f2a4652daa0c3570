"""
Request models for API endpoints.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class ChatRequest(BaseModel):
    """
    Body of POST /api/chat.

    ``prompt`` is optional at the schema level so that a missing prompt and a
    blank prompt are rejected by the same validation path.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[StrictStr] = None
    async_: bool = Field(False, alias="async")
