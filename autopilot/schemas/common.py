"""Shared response schemas."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error body produced by HTTPException (documented on routes that map service error codes)."""

    detail: str = Field(..., description="Error message")
    code: Optional[str] = Field(None, description="Service error code, e.g. script_not_draft")
    extra: Optional[Dict[str, Any]] = Field(None, description="Extra context")
