from typing import Any
from fastapi.responses import ORJSONResponse


def error_response(status_code: int, error: str, details: Any = None) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={'status': 'error', 'error': error, 'details': details}
    )
