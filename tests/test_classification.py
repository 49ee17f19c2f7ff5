"""End-to-end classification of analyzer responses."""

from __future__ import annotations

from typing import Any

import pytest

import classification
from classification import MALFORMED_PAYLOAD_MESSAGE, classify, process_response
from helpers import ok_response
from models import AnalysisRequest, ErrorKind, Methodology, Outcome, RawResponse
from normalization import normalize
from payload_extraction import MalformedPayload

pytestmark = pytest.mark.unit


def test_http_error_never_reaches_normalizer(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(*_args, **_kwargs):
        raise AssertionError("normalizer invoked for a transport failure")

    monkeypatch.setattr(classification, "normalize", fail)
    response = RawResponse(http_status=500, body_text='[{"name": "Diesel"}]')

    result = process_response(response, "auto")

    assert result.outcome == Outcome.FAILURE
    assert "500" in result.message
    assert result.error.kind == ErrorKind.TRANSPORT_FAILURE
    assert result.error.status_code == 500
    assert result.error.raw_body == '[{"name": "Diesel"}]'


def test_network_error_is_transport_failure() -> None:
    result = process_response(RawResponse(transport_error="Connection refused"), "auto")

    assert result.outcome == Outcome.FAILURE
    assert result.error.kind == ErrorKind.TRANSPORT_FAILURE
    assert "Connection refused" in result.message
    assert result.error.status_code is None


def test_unreadable_body_is_malformed_payload() -> None:
    result = process_response(RawResponse(http_status=200, body_text="upstream proxy error"), "auto")

    assert result.outcome == Outcome.FAILURE
    assert result.error.kind == ErrorKind.MALFORMED_PAYLOAD
    assert result.message == MALFORMED_PAYLOAD_MESSAGE
    assert result.line_items == []


def test_deeply_nested_body_is_malformed_payload() -> None:
    body = "[" * 100000 + "]" * 100000

    result = process_response(RawResponse(http_status=200, body_text=body), "auto")

    assert result.outcome == Outcome.FAILURE
    assert result.error.kind == ErrorKind.MALFORMED_PAYLOAD


def test_noisy_bare_array_succeeds() -> None:
    response = RawResponse(http_status=200, body_text='INFO: starting job\n[{"name":"Diesel","tco2":"1.234"}]\n')

    result = process_response(response, "auto", filename="fuel.pdf")

    assert result.outcome == Outcome.SUCCESS
    assert len(result.line_items) == 1
    assert result.line_items[0].emissions_tco2 == 1.234
    assert result.meta.filename == "fuel.pdf"


def test_upstream_error_object_message_is_kept() -> None:
    result = process_response(ok_response({"status": "error", "detail": "unsupported file type"}), "auto")

    assert result.outcome == Outcome.FAILURE
    assert result.message == "unsupported file type"


def test_request_supplies_methodology_and_filename(nested_payload: dict[str, Any]) -> None:
    del nested_payload["result"]["methodology"]
    del nested_payload["result"]["filename"]
    request = AnalysisRequest(document_bytes=b"%PDF", filename="acme.pdf", methodology="spend")

    result = process_response(ok_response(nested_payload), request)

    assert result.meta.filename == "acme.pdf"
    assert result.meta.methodology == Methodology.SPEND.value


def test_classify_rules(nested_payload: dict[str, Any]) -> None:
    ok = RawResponse(http_status=200, body_text="{}")
    parsed = normalize(nested_payload, "auto")

    assert classify(RawResponse(http_status=502), parsed) == Outcome.FAILURE
    assert classify(ok, MalformedPayload("bad")) == Outcome.FAILURE
    assert classify(ok, None) == Outcome.FAILURE
    assert classify(ok, parsed) == Outcome.SUCCESS


@pytest.mark.parametrize("status", [199, 204, 299, 300, 404])
def test_only_2xx_is_transport_success(status: int) -> None:
    assert RawResponse(http_status=status).ok == (200 <= status < 300)
