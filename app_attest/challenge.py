"""
Challenge retrieval from the attestation verifier.
"""

import requests
import structlog
from pydantic import ValidationError

from app_attest.errors import DecodingError, TransportError
from app_attest.logging_config import short
from app_attest.models import Challenge, compute_client_data_hash
from app_attest.telemetry import tracer

logger = structlog.get_logger(__name__)

CHALLENGE_PATH = "/attest/challenge"

__all__ = ["ChallengeClient", "compute_client_data_hash"]


class ChallengeClient:
    """Client for the verifier's challenge endpoint."""

    def __init__(self, base_url: str, session: requests.Session, timeout: float = 10.0):
        """
        Initialize the challenge client.

        Args:
            base_url: Verifier base URL, e.g. https://localhost:3000
            session: Shared HTTP session carrying the TLS policy
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout

    def request_challenge(self) -> Challenge:
        """
        Request a new attestation challenge from the server.

        Returns:
            A single-use challenge

        Raises:
            TransportError: On network failure
            DecodingError: If the body is not {"challenge": <string>}
        """
        url = f"{self.base_url}{CHALLENGE_PATH}"
        with tracer.start_as_current_span("request_challenge"):
            try:
                response = self.session.get(url, timeout=self.timeout)
            except requests.RequestException as e:
                logger.error("Failed to request challenge", url=url, error=str(e))
                raise TransportError(f"Challenge request failed: {e}") from e

            try:
                challenge = Challenge.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                if response.status_code >= 400:
                    logger.error("Challenge request rejected", url=url, status_code=response.status_code)
                    raise TransportError(
                        f"Challenge request failed with HTTP {response.status_code}"
                    ) from e
                logger.error("Malformed challenge response", url=url, error=str(e))
                raise DecodingError("The challenge response could not be decoded.") from e

        logger.info("Received challenge", challenge=short(challenge.value))
        return challenge
