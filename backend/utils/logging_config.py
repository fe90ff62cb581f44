import logging
import logging.handlers
import contextvars
import time
from pathlib import Path
from typing import Optional

from core.config import settings
from core.security import verify_token
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


def _ensure_log_dir(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)


def map_log_level(level_name: str) -> int:
    level = logging.getLevelName((level_name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


user_id_var = contextvars.ContextVar("user_id", default="-")
api_var = contextvars.ContextVar("api", default="-")
client_ip_var = contextvars.ContextVar("client_ip", default="-")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = user_id_var.get()
        record.api = api_var.get()
        record.client_ip = client_ip_var.get()
        return True


def _build_rotating_file_handler(filename: str, level: int, formatter: logging.Formatter, log_dir: Path) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir / filename),
        when="midnight",
        interval=1,
        backupCount=max(int(settings.LOG_TTL_DAYS), 0),
        encoding="utf-8",
        utc=True,
    )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def _build_handlers(level: int, log_dir: Path) -> dict[str, logging.Handler]:
    formatter = logging.Formatter(
        fmt="%(levelname)s - %(asctime)s - %(name)s - %(user_id)s - %(client_ip)s - %(api)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter())

    return {
        "app": _build_rotating_file_handler("app.log", level, formatter, log_dir),
        "access": _build_rotating_file_handler("access.log", level, formatter, log_dir),
        "error": _build_rotating_file_handler("error.log", logging.WARNING, formatter, log_dir),
        "console": console_handler,
    }


def _reset_handlers(target_logger: logging.Logger, handlers: list[logging.Handler], level: int) -> None:
    for h in list(target_logger.handlers):
        target_logger.removeHandler(h)
    for h in handlers:
        target_logger.addHandler(h)
    target_logger.setLevel(level)


def configure_logging(app_logger_name: Optional[str] = None) -> logging.Logger:
    """Configure logging with daily rotation and TTL-based retention.

    - Rotates at midnight; keeps last LOG_TTL_DAYS files
    - Module loggers propagate to root (app + error + console)
    - Request lines go to access.log through the "<app>.access" logger
    """
    log_dir = Path(settings.LOG_DIR)
    _ensure_log_dir(log_dir)

    level = map_log_level(settings.LOG_LEVEL)
    handlers = _build_handlers(level, log_dir)
    app_handlers = [handlers["app"], handlers["error"], handlers["console"]]

    _reset_handlers(logging.getLogger(), app_handlers, level)

    app_name = app_logger_name or "vitaclube"
    app_logger = logging.getLogger(app_name)
    app_logger.propagate = False
    _reset_handlers(app_logger, app_handlers, level)

    for name in ("uvicorn", "uvicorn.error", "fastapi"):
        lgr = logging.getLogger(name)
        lgr.propagate = False
        _reset_handlers(lgr, app_handlers, level)

    for name in ("uvicorn.access", f"{app_name}.access"):
        lgr = logging.getLogger(name)
        lgr.propagate = False
        _reset_handlers(lgr, [handlers["access"], handlers["console"]], level)

    # SQL echo stays off unless explicitly debugging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.DEBUG if settings.DEBUG else logging.WARNING)

    return app_logger


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "-"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind user id, client IP and route to the logging context for each request."""

    access_logger = logging.getLogger("vitaclube.access")

    async def dispatch(self, request: Request, call_next):
        user_id = "-"
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.startswith("Bearer "):
            payload = verify_token(auth_header.split(" ", 1)[1])
            if payload:
                user_id = payload.get("sub") or "-"

        tokens = (
            (user_id_var, user_id_var.set(user_id)),
            (api_var, api_var.set(f"{request.method} {request.url.path}")),
            (client_ip_var, client_ip_var.set(_client_ip(request))),
        )
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self.access_logger.info(f"{status_code} in {elapsed_ms:.2f} ms")
            for var, token in tokens:
                var.reset(token)
