"""
Client for the verifier's attestation validation and assertion verification endpoints.
"""

from typing import Union

import requests
import structlog
from pydantic import BaseModel, ValidationError

from app_attest.errors import DecodingError, TransportError
from app_attest.logging_config import short
from app_attest.models import AssertionPayload, AttestationPayload, VerifierResult
from app_attest.telemetry import tracer

logger = structlog.get_logger(__name__)

VALIDATE_PATH = "/attest/validate"
VERIFY_PATH = "/attest/verify"


class VerifierClient:
    """
    Client for submitting attestations and assertions to the verifier.

    Each call is one POST with no retry. A non-2xx status with a well-formed
    body still yields a VerifierResult so the caller sees the server's error.
    """

    def __init__(self, base_url: str, session: requests.Session, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout

    def validate_attestation(self, payload: AttestationPayload) -> VerifierResult:
        """
        Validate a new key's attestation with the server.

        Args:
            payload: Attestation blob and the values bound into it

        Returns:
            The server's result; on success `result` echoes the key identifier
        """
        with tracer.start_as_current_span("validate_attestation"):
            logger.info("Submitting attestation", key_id=short(payload.key_identifier))
            return self._post(VALIDATE_PATH, payload.to_request())

    def verify_assertion(self, payload: AssertionPayload) -> VerifierResult:
        """
        Verify an assertion with the server.

        Args:
            payload: Assertion blob and the values bound into it

        Returns:
            The server's result; on success `result` carries the usage counter
        """
        with tracer.start_as_current_span("verify_assertion"):
            logger.info("Submitting assertion", key_id=short(payload.key_identifier))
            return self._post(VERIFY_PATH, payload.to_request())

    def _post(self, path: str, body: Union[BaseModel, dict]) -> VerifierResult:
        url = f"{self.base_url}{path}"
        if isinstance(body, BaseModel):
            body = body.model_dump(by_alias=True)

        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("Verifier request failed", url=url, error=str(e))
            raise TransportError(f"Request to {path} failed: {e}") from e

        try:
            result = VerifierResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            if response.status_code >= 400:
                logger.error("Verifier rejected request", url=url, status_code=response.status_code)
                raise TransportError(f"Request to {path} failed with HTTP {response.status_code}") from e
            logger.error("Malformed verifier response", url=url, error=str(e))
            raise DecodingError(f"The response from {path} could not be decoded.") from e

        logger.info(
            "Verifier responded",
            path=path,
            status_code=response.status_code,
            has_result=result.result is not None,
            error=result.error,
        )
        return result
