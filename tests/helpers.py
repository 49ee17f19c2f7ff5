"""Shared test helpers."""

from __future__ import annotations

import json
from typing import Any, List, Optional

from models import AnalysisRequest, RawResponse


class FakeAnalyzerClient:
    """Records submitted requests and replays a canned RawResponse."""

    def __init__(self, response: Optional[RawResponse] = None):
        self.response = response or RawResponse(http_status=200, body_text="[]")
        self.requests: List[AnalysisRequest] = []

    def analyze(self, request: AnalysisRequest) -> RawResponse:
        self.requests.append(request)
        return self.response


def ok_response(payload: Any) -> RawResponse:
    return RawResponse(http_status=200, body_text=json.dumps(payload))
