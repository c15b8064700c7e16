"""
HTTP Manipulation Client
========================

Talks to a remote-control endpoint that exposes one POST route per
manipulation:

    POST {base_url}/manipulations/{operation}
    body:     {"<param>": "<value>", ...}
    response: {"result": "SUCCESS" | "FAIL" | "NOT_SUPPORTED" | "NOT_IMPLEMENTED",
               "value": "<optional returned identifier>"}

A request that exceeds the timeout is a FAIL with timed_out set. An
unknown route (404) is NOT_IMPLEMENTED. Any other HTTP error propagates.
"""

from __future__ import annotations
from typing import Mapping, Optional

import httpx

from ..contracts.messages import ManipulationResponse, ManipulationResult
from . import ManipulationClient


class HttpManipulationClient(ManipulationClient):

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self._timeout_seconds = timeout_seconds
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def __enter__(self) -> HttpManipulationClient:
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        self._client.close()

    def invoke(self, operation: str, params: Mapping[str, str]) -> ManipulationResponse:
        try:
            resp = self._client.post(f"/manipulations/{operation}", json=dict(params))
        except httpx.TimeoutException:
            return ManipulationResponse(result=ManipulationResult.FAIL, timed_out=True)

        if resp.status_code == 404:
            return ManipulationResponse(result=ManipulationResult.NOT_IMPLEMENTED)
        resp.raise_for_status()

        payload = resp.json()
        return ManipulationResponse(
            result=ManipulationResult(payload["result"]),
            value=payload.get("value"),
        )
