from pydantic import BaseModel, Field
from typing import Any, Optional
import uuid

from app.core.correlation import get_correlation_id

def _rid():
    return uuid.uuid4().hex

class SuccessResponse(BaseModel):
    """Success wrapper: data plus the ids needed to trace the request through the outbox."""
    success: Optional[bool] = Field(default=True)
    request_id: str = Field(default_factory=_rid)
    correlation_id: Optional[str] = Field(default_factory=get_correlation_id)
    data: Optional[Any] = None
