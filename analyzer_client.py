import logging
from typing import Optional

import requests

from models import AnalysisRequest, RawResponse

logger = logging.getLogger(__name__)

INVOICE_ENDPOINT = "/api/v1/invoice-analyzer/invoice"


class AnalyzerClient:
    """Thin transport to the remote invoice analyzer. Never retries, never raises for I/O."""

    def __init__(self, base_url: str, timeout: float = 120, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def analyze(self, request: AnalysisRequest) -> RawResponse:
        url = f"{self.base_url}{INVOICE_ENDPOINT}"
        logger.info(f"Submitting {request.filename} ({len(request.document_bytes)} bytes) "
                    f"with methodology {request.methodology.value}")
        try:
            resp = self.session.post(
                url,
                params={'methodology': request.methodology.value},
                json=request.to_payload(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Invoice analyzer request failed: {e}")
            return RawResponse(transport_error=str(e))
        logger.info(f"Invoice analyzer responded with status {resp.status_code}")
        return RawResponse(http_status=resp.status_code, body_text=resp.text)

