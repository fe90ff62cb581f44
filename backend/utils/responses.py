from typing import Any, Optional
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

def no_store_json(data, status_code: int = 200):
    """Return JSONResponse with no-store caching headers."""
    return JSONResponse(content=jsonable_encoder(data), status_code=status_code, headers=NO_STORE_HEADERS)

def success_response(data: Any = None, message: Optional[str] = None, status_code: int = 200):
    """Wrap a payload in the {success, message, data} envelope."""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return no_store_json(body, status_code=status_code)

def error_body(message: str, status_code: int, details: Any = None) -> dict:
    error = {"message": message, "statusCode": status_code}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}
