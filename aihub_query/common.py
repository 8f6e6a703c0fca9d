import datetime
from functools import wraps
import logging
import time

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


def error_handler(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException as e:
            return build_error_response(e.status_code, e.detail)
        except Exception:
            logger.exception(f"unhandled error in {func.__name__}")
            return build_error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "unknown server error",
            )

    return wrapper


def _dump(data):
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, list):
        return [_dump(item) for item in data]
    return jsonable_encoder(data)


def build_json_response(
    status_code: int,
    message: str | None = None,
    data: BaseModel | list | dict | None = None,
) -> JSONResponse:
    content = {"status": "success"}
    if message is not None:
        content["message"] = message
    content["data"] = _dump(data) if data is not None else {}
    return JSONResponse(status_code=status_code, content=content)


def build_error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"status": "error", "message": message}
    )


def build_ok_response(
    data: BaseModel | list | dict | None = None, message: str | None = None
) -> JSONResponse:
    return build_json_response(status.HTTP_200_OK, message, data)


def utcnow() -> datetime.datetime:
    # use datetime here so we can use freezegun in tests
    return datetime.datetime.now(datetime.timezone.utc)


def epoch_ms():
    return int(time.time() * 1000)
