"""Translate ``OperationResult`` into HTTP responses."""

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from src.domain.errors import ErrorKind
from src.domain.results import OperationResult

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STATE_CONFLICT: 409,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.EXTERNAL_SERVICE: 502,
}


def to_response(result: OperationResult, success_status: int = 200) -> JSONResponse:
    status = success_status if result.success else STATUS_BY_KIND[result.error_kind]
    return JSONResponse(status_code=status, content=jsonable_encoder(result.to_dict()))
