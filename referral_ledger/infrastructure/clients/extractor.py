"""Extractor HTTP client - turns a clinic email into raw patient records"""

import base64
import httpx
from typing import Any, Dict, List
from referral_ledger.domain.models import Attachment
from referral_ledger.domain.exceptions import ExtractorError
from referral_ledger.config import settings


class ExtractorClient:
    """Client for the external AI extraction service"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.extractor_api_base
        self.timeout = timeout or settings.http_timeout_seconds

    async def extract(
        self,
        body: str,
        sender: str,
        subject: str,
        attachments: List[Attachment] | None = None,
    ) -> List[Dict[str, Any]]:
        """
        Extract patient visit records from an email.

        Returns the raw records as sent by the service; validation is the
        normalizer's job.

        Raises:
            ExtractorError: On timeout, HTTP errors, or a malformed response
        """
        payload = {
            "body": body,
            "sender": sender,
            "subject": subject,
            "attachments": [
                {
                    "filename": a.filename,
                    "content_type": a.content_type,
                    "content_b64": base64.b64encode(a.content).decode("ascii"),
                }
                for a in attachments or []
            ],
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(f"{self.base_url}/extract", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.TimeoutException as e:
                raise ExtractorError(f"Extractor timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ExtractorError(f"Extractor error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ExtractorError(f"Extractor unreachable: {e}") from e
            except ValueError as e:
                raise ExtractorError(f"Invalid extractor response: {e}") from e

        patients = data.get("patients") if isinstance(data, dict) else None
        if not isinstance(patients, list):
            raise ExtractorError("Invalid extractor response: 'patients' list missing")
        return patients
