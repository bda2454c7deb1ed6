"""Response envelopes shared by the JSON routes."""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from agentchat.schemas import ErrorEnvelope, SuccessEnvelope


def ok(data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(SuccessEnvelope(data=data)))


def error(message: str, status_code: int, details: Optional[Any] = None) -> JSONResponse:
    content = ErrorEnvelope(error=message).model_dump()
    if details is not None:
        content["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=content)
