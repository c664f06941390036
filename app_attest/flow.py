"""
Attestation flow orchestration.

AttestationFlow drives the two protocol operations against the verifier:

- enroll: fresh challenge -> new device key -> attestation -> server validation
  -> persist {id, count: 0}
- assert: fresh challenge -> assertion with the stored key -> server
  verification -> persist the server's usage counter

Only the flow writes to the KeyStore, and only at the end of a successful
operation. A failed operation leaves the stored record exactly as it was.
"""

import re
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, Optional

import structlog

from app_attest.challenge import ChallengeClient
from app_attest.config import Settings
from app_attest.errors import (
    KeyAlreadyEnrolledError,
    MissingKeyError,
    OperationInProgressError,
    ServerError,
    UnsupportedDeviceError,
)
from app_attest.key_store import KeyStore
from app_attest.logging_config import short
from app_attest.models import AssertionPayload, AttestationPayload, KeyRecord
from app_attest.primitive import KeyAttestationPrimitive
from app_attest.telemetry import error_counter, operation_counter, tracer
from app_attest.utils.ssl_utils import SSLUtils
from app_attest.verifier import VerifierClient

logger = structlog.get_logger(__name__)

_COUNTER_PATTERN = re.compile(r"[0-9]+")

UNEXPECTED_KEY_ID = "Attestation failed: server returned unexpected key ID."
UNEXPECTED_ASSERTION_RESULT = "Assertion verification failed: server returned unexpected error."


class FlowState(str, Enum):
    NO_KEY = "no_key"
    ENROLLING = "enrolling"
    HAS_KEY = "has_key"
    ASSERTING = "asserting"


def parse_usage_count(value: Optional[str]) -> Optional[int]:
    """Parse the verifier's counter; None unless it is a plain non-negative integer."""
    if value is None or not _COUNTER_PATTERN.fullmatch(value):
        return None
    try:
        return int(value)
    except ValueError:
        # Exceeds the interpreter's integer string conversion limit.
        return None


class AttestationFlow:
    """Enroll/assert state machine for the device's attested key."""

    def __init__(
        self,
        primitive: KeyAttestationPrimitive,
        challenge_client: ChallengeClient,
        verifier_client: VerifierClient,
        key_store: KeyStore,
        app_id: str,
        principal: str,
    ):
        """
        Initialize the flow.

        Args:
            primitive: Platform key attestation capability
            challenge_client: Source of fresh challenges
            verifier_client: Verifier endpoints for attestation and assertion
            key_store: Owner of the persisted key record
            app_id: "<team id>.<bundle id>" bound into every payload
            principal: User the attestation is performed for
        """
        self.primitive = primitive
        self.challenge_client = challenge_client
        self.verifier_client = verifier_client
        self.key_store = key_store
        self.app_id = app_id
        self.principal = principal

        self._lock = threading.Lock()
        self._state = FlowState.HAS_KEY if key_store.load() is not None else FlowState.NO_KEY

        logger.info("Attestation flow initialized", state=self._state.value, app_id=app_id)

    @classmethod
    def from_settings(cls, settings: Settings, primitive: KeyAttestationPrimitive) -> "AttestationFlow":
        """Build a flow whose clients share one session with the configured TLS policy."""
        session = SSLUtils.create_session(settings)
        return cls(
            primitive=primitive,
            challenge_client=ChallengeClient(settings.verifier_base_url, session, settings.request_timeout),
            verifier_client=VerifierClient(settings.verifier_base_url, session, settings.request_timeout),
            key_store=KeyStore(settings.defaults_path),
            app_id=settings.app_id,
            principal=settings.user_id,
        )

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def status(self) -> Dict[str, Any]:
        """Snapshot of the flow state and the stored key record."""
        record = self.key_store.load()
        return {
            "state": self._state.value,
            "busy": self.is_busy,
            "key_id": record.identifier if record else None,
            "count": record.usage_count if record else None,
        }

    def enroll(self) -> KeyRecord:
        """
        Generate, attest and validate a new key, then persist it with a zero count.

        Returns:
            The newly stored key record

        Raises:
            UnsupportedDeviceError: If the device cannot attest keys
            KeyAlreadyEnrolledError: If a key is already stored
            TransportError, DecodingError, InvalidChallengeError, AttestationError,
            ServerError: If any protocol step fails
        """
        with self._exclusive("enroll"), tracer.start_as_current_span("enroll"):
            self._require_supported("enroll")
            if self._state is FlowState.HAS_KEY:
                raise KeyAlreadyEnrolledError()

            self._state = FlowState.ENROLLING
            try:
                record = self._enroll()
            except Exception as e:
                self._state = FlowState.NO_KEY
                self._record_failure("enroll", e)
                raise

            self._state = FlowState.HAS_KEY
            logger.info("Enroll completed", key_id=short(record.identifier))
            return record

    def assert_key(self) -> KeyRecord:
        """
        Prove possession of the stored key and adopt the verifier's usage counter.

        Returns:
            The stored key record carrying the updated counter

        Raises:
            UnsupportedDeviceError: If the device cannot attest keys
            MissingKeyError: If no key has been enrolled
            TransportError, DecodingError, InvalidChallengeError, KeyAssertionError,
            ServerError: If any protocol step fails
        """
        with self._exclusive("assert"), tracer.start_as_current_span("assert"):
            self._require_supported("assert")

            previous_state = self._state
            self._state = FlowState.ASSERTING
            try:
                record = self._assert()
            except Exception as e:
                self._state = previous_state
                self._record_failure("assert", e)
                raise

            self._state = FlowState.HAS_KEY
            logger.info("Assertion verified", key_id=short(record.identifier), count=record.usage_count)
            return record

    def clear(self) -> None:
        """Delete the stored key record. The verifier is not notified."""
        with self._exclusive("clear"):
            self.key_store.clear()
            self._state = FlowState.NO_KEY
            logger.info("Key identifier deleted")

    def _enroll(self) -> KeyRecord:
        challenge = self.challenge_client.request_challenge()
        digest = challenge.digest()

        key_id = self.primitive.generate_key()
        logger.info("Generated device key", key_id=short(key_id))

        attestation = self.primitive.attest_key(key_id, digest)

        result = self.verifier_client.validate_attestation(
            AttestationPayload(
                blob=attestation,
                key_identifier=key_id,
                digest=digest,
                app_identifier=self.app_id,
                principal=self.principal,
            )
        )

        if result.error is not None:
            raise ServerError(result.error)
        if result.result != key_id:
            raise ServerError(UNEXPECTED_KEY_ID)

        record = KeyRecord(identifier=key_id, usage_count=0)
        self.key_store.save(record)
        return record

    def _assert(self) -> KeyRecord:
        challenge = self.challenge_client.request_challenge()
        digest = challenge.digest()

        record = self.key_store.load()
        if record is None:
            raise MissingKeyError()

        assertion = self.primitive.generate_assertion(record.identifier, digest)

        result = self.verifier_client.verify_assertion(
            AssertionPayload(
                blob=assertion,
                key_identifier=record.identifier,
                digest=digest,
                app_identifier=self.app_id,
                challenge=challenge.value,
            )
        )

        if result.error is not None:
            raise ServerError(result.error)

        count = parse_usage_count(result.result)
        if count is None:
            raise ServerError(UNEXPECTED_ASSERTION_RESULT)

        # The verifier owns the counter: overwrite, never increment locally.
        updated = record.with_count(count)
        self.key_store.save(updated)
        return updated

    def _require_supported(self, operation: str) -> None:
        if not self.primitive.is_supported():
            logger.error("Device does not support key attestation", operation=operation)
            error_counter.add(1, {"operation": operation, "error": UnsupportedDeviceError.__name__})
            raise UnsupportedDeviceError()

    def _record_failure(self, operation: str, error: Exception) -> None:
        logger.error(
            "Attestation operation failed",
            operation=operation,
            error_type=type(error).__name__,
            error=str(error),
        )
        error_counter.add(1, {"operation": operation, "error": type(error).__name__})

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            logger.warning("Rejected concurrent operation", operation=operation, state=self._state.value)
            raise OperationInProgressError()
        try:
            operation_counter.add(1, {"operation": operation})
            yield
        finally:
            self._lock.release()
