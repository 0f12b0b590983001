from __future__ import annotations

import time

import httpx


FETCH_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)


async def fetch(
    client: httpx.AsyncClient,
    *,
    url: str,
    user_agent: str,
    extra_headers: dict[str, str] | None = None,
) -> tuple[int, bytes | None, int]:
    headers = {
        "User-Agent": user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)

    # response.elapsed is only set once the transport closes the stream,
    # which prebuilt responses never do.
    started = time.perf_counter()
    response = await client.get(url, headers=headers, timeout=FETCH_TIMEOUT)
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return (
        response.status_code,
        (response.content if 200 <= response.status_code < 300 else None),
        elapsed_ms,
    )
