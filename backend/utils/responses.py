from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def _envelope(ok: bool, data, error, message: str) -> dict:
    # datetimes in payloads (trial expiry) are rendered as ISO strings
    return jsonable_encoder({
        "ok": ok,
        "data": data or {},
        "error": error,
        "message": message,
    })


def success_response(data=None, message="OK", status=200):
    return JSONResponse(status_code=status, content=_envelope(True, data, None, message))


def error_response(error_code, status=400, message="An error occurred", data=None):
    return JSONResponse(status_code=status, content=_envelope(False, data, error_code, message))
