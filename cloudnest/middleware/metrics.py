"""
FastAPI middleware for automatic Prometheus metrics collection.

This middleware tracks:
- Total API requests with method, endpoint, and status labels
- Request duration histograms
- In-progress request gauges
"""
import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from cloudnest.metrics import api_requests_in_progress, record_api_request

# Collections whose next path segment is an entity id
ID_COLLECTIONS = {
    "storage-backends": "{backend_id}",
    "files": "{file_id}",
    "folders": "{folder_id}",
}

# Fixed sub-routes that must not be mistaken for ids
RESERVED_SEGMENTS = {"admit", "search", "trash", "duplicates", "stats", "health-check", "by-path"}

UUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to automatically track API request metrics.

    Excludes the metrics endpoint itself to avoid feedback loops.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        path = request.url.path

        if path == "/metrics":
            return await call_next(request)

        endpoint = normalize_path(path)
        api_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            record_api_request(method, endpoint, status_code, time.perf_counter() - start_time)
            api_requests_in_progress.labels(method=method, endpoint=endpoint).dec()


def normalize_path(path: str) -> str:
    """
    Replace entity ids with placeholders to keep label cardinality low.

    Examples:
        /api/v1/files/0b6f...e1 -> /api/v1/files/{file_id}
        /api/v1/folders/0b6f...e1/rename -> /api/v1/folders/{folder_id}/rename
        /api/v1/files/search -> /api/v1/files/search
    """
    parts = path.split("/")
    normalized = []
    for i, part in enumerate(parts):
        previous = parts[i - 1] if i > 0 else ""
        if previous in ID_COLLECTIONS and part and part not in RESERVED_SEGMENTS:
            normalized.append(ID_COLLECTIONS[previous])
        elif UUID_PATTERN.match(part):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/".join(normalized)
