from collections.abc import Callable
from uuid import uuid4

from fastapi import BackgroundTasks, Request, Response
from fastapi.routing import APIRoute
from starlette.background import BackgroundTask

from media_search.utils.logging import ctx_var_request_id, make_logger
from media_search.utils.request_utils import (
    decode_request_body,
    strip_sensitive_items,
    summarize_cursor_headers,
)

logger = make_logger(__name__)


def log_request(
    request_id: str,
    request: Request,
    request_body: bytes,
):
    raw_path = request.scope["root_path"] + request.scope["route"].path
    request_dict = decode_request_body(request_body)
    cursor_headers = summarize_cursor_headers(request.headers)
    logger.info(
        f"Request [{request.method} {raw_path}] ({request_id}): "
        f"params={dict(request.query_params)} cursor={cursor_headers} body={request_dict}",
        extra={
            "method": request.method,
            "path": raw_path,
            "query_params": dict(request.query_params),
            "cursor_headers": cursor_headers,
            "headers": dict(strip_sensitive_items(request.headers)),
            "body": request_dict,
            "request_id": request_id,
        },
    )


def log_response(request_id: str, request: Request, response: Response):
    logger.info(
        f"Response[{response.status_code}] [{request.method} {request.url.path}] ({request_id})",
        extra={
            "status_code": response.status_code,
            "method": request.method,
            "path": request.url.path,
            "request_id": request_id,
        },
    )


class LoggedAPIRoute(APIRoute):
    def get_route_handler(self) -> Callable:
        # Capture the original factory; calling it here would resolve
        # dependencies too early
        original_get_route_handler = super().get_route_handler

        def add_logging_to_background_tasks(
            response: Response, request_id: str, request: Request
        ) -> BackgroundTasks | BackgroundTask:
            logging_task = BackgroundTask(log_response, request_id, request, response)
            if isinstance(response.background, BackgroundTasks):
                response.background.add_task(logging_task)
                return response.background
            else:
                return logging_task

        async def custom_route_handler(request: Request) -> Response:
            request_body = await request.body()
            request_id = ctx_var_request_id.get(None) or uuid4().hex
            log_request(request_id, request, request_body)
            response = await original_get_route_handler()(request)
            response.background = add_logging_to_background_tasks(
                response, request_id, request
            )
            return response

        return custom_route_handler
