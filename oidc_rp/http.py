"""Shared outbound HTTP client handling."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx


@asynccontextmanager
async def open_client(
    client: Optional[httpx.AsyncClient],
    timeout: float,
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Yield the injected client, or a short-lived one closed on exit.

    The injected client belongs to the application and is never closed here.
    """
    if client is not None:
        yield client
        return

    async with httpx.AsyncClient(timeout=timeout) as own_client:
        yield own_client


def is_json_response(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return content_type.split(";")[0].strip().lower().endswith("json")
