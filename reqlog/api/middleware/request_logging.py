"""
Request logging middleware for FastAPI.
Drives the facade's request lifecycle hooks for every HTTP request.
"""
import contextlib
import json

from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from reqlog.core.logging import LoggerFacade, get_logger

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware logging the incoming request and its outcome.

    JSON bodies with a known length are exposed to the facade as the
    response ``result``. Responses without a content length are streams
    and their body is never read.
    """

    def __init__(self, app, facade: LoggerFacade, excluded_paths: list | None = None):
        super().__init__(app)
        self.facade = facade
        self.excluded_paths = excluded_paths or []

    async def dispatch(self, request: Request, call_next) -> Response:
        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        context = self.facade.on_request_start(request)

        try:
            response = await call_next(request)
        except Exception as e:
            self.facade.on_error_response(e, request)

        self.facade.set_correlation_header(response, context)

        if response.status_code < 400:
            response = await self._attach_result(response)
            self.facade.on_success_response(request, response)
        else:
            # Error responses get no success record; drop the request's metadata.
            self.facade.meta.clear()

        return response

    async def _attach_result(self, response: Response) -> Response:
        """Buffer a JSON body and expose it as ``response.result``."""
        if "content-length" not in response.headers:
            return response
        if "json" not in response.headers.get("content-type", ""):
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        buffered = Response(content=body, status_code=response.status_code)
        buffered.raw_headers = list(response.raw_headers)
        buffered.background = getattr(response, "background", None)

        try:
            buffered.result = json.loads(body) if body else None
        except ValueError:
            logger.debug("Response body is not valid JSON", length=len(body))
        return buffered


def install_request_logging(
    app: FastAPI, facade: LoggerFacade, excluded_paths: list | None = None
) -> None:
    """
    Add request logging to an application.

    Besides the middleware this registers an HTTPException handler, so
    errors FastAPI turns into responses are logged as exception responses
    before the default handler renders them.
    """
    app.add_middleware(RequestLoggingMiddleware, facade=facade, excluded_paths=excluded_paths)

    async def log_http_exception(request: Request, exc: StarletteHTTPException) -> Response:
        with contextlib.suppress(StarletteHTTPException):
            facade.on_error_response(exc, request)
        return await http_exception_handler(request, exc)

    app.add_exception_handler(StarletteHTTPException, log_http_exception)
