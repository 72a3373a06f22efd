"""Error envelope shared by every handler in app.py and documented on the v1 router."""

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    field: str | None = None
    message: str


class ErrorBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    message: str
    details: list[ErrorDetail] = Field(default_factory=list)
    request_id: str = Field(alias="requestId")


class ErrorResponse(BaseModel):
    """``{"error": {"code", "message", "details", "requestId"}}``"""

    error: ErrorBody


def error_response(
    status_code: int, code: str, message: str, request_id: str, details: list[dict] | None = None
) -> JSONResponse:
    envelope = ErrorResponse(
        error=ErrorBody(code=code, message=message, details=details or [], request_id=request_id)
    )
    return JSONResponse(status_code=status_code, content=envelope.model_dump(by_alias=True))
