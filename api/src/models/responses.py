"""Response schemas shared by the routers."""

from typing import Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str


class SuccessResponse(BaseModel):
    """Minimal body of a successful call."""

    success: bool = True
    message: Optional[str] = None
