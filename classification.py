import logging
from typing import Any, Optional, Union

from models import (
    AnalysisRequest,
    AnalysisResult,
    ErrorDetail,
    ErrorKind,
    Methodology,
    Outcome,
    RawResponse,
    ResultMeta,
)
from normalization import normalize
from payload_extraction import MalformedPayload, extract

logger = logging.getLogger(__name__)

MALFORMED_PAYLOAD_MESSAGE = "The invoice analyzer returned a response that could not be read"


def classify(transport: RawResponse, parsed: Union[AnalysisResult, MalformedPayload, None] = None) -> Outcome:
    """Outcome of one analysis: only an extracted and normalized payload can succeed."""
    if not transport.ok:
        return Outcome.FAILURE
    if not isinstance(parsed, AnalysisResult):
        return Outcome.FAILURE
    return parsed.outcome


def transport_failure(response: RawResponse, meta: Optional[ResultMeta] = None) -> AnalysisResult:
    return AnalysisResult.failed(
        ErrorDetail(
            kind=ErrorKind.TRANSPORT_FAILURE,
            message=f"Failed to analyze invoice: {response.describe()}",
            status_code=response.http_status,
            raw_body=response.body_text or None,
        ),
        meta=meta,
    )


def process_response(response: RawResponse, request: Union[AnalysisRequest, Any] = None,
                     filename: Optional[str] = None) -> AnalysisResult:
    """
    Turn an analyzer response into the canonical result.

    `request` may be the AnalysisRequest that produced the response or just a
    methodology value. Transport failures never reach the normalizer, and no
    parsing or shape error escapes as an exception.
    """
    if isinstance(request, AnalysisRequest):
        methodology = request.methodology
        filename = filename or request.filename
    else:
        methodology = Methodology.coerce(request)
    meta = ResultMeta(filename=filename, methodology=methodology.value)

    if not response.ok:
        logger.warning("Invoice analyzer transport failure: %s", response.describe())
        return transport_failure(response, meta)

    parsed: Union[AnalysisResult, MalformedPayload]
    try:
        value = extract(response.body_text)
    except MalformedPayload as e:
        logger.warning("Malformed analyzer payload: %s", e)
        parsed = e
    else:
        parsed = normalize(value, methodology, filename)

    outcome = classify(response, parsed)
    logger.info("Invoice analysis outcome: %s", outcome.value)
    if isinstance(parsed, MalformedPayload):
        return AnalysisResult.failed(
            ErrorDetail(
                kind=ErrorKind.MALFORMED_PAYLOAD,
                message=MALFORMED_PAYLOAD_MESSAGE,
                status_code=response.http_status,
                raw_body=response.body_text or None,
            ),
            meta=meta,
        )
    return parsed
