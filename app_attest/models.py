"""
Typed structures exchanged with the verifier and persisted on the device.

Wire models use the verifier's camelCase field names through aliases; binary
fields travel as standard base64 strings.
"""

import base64
import hashlib
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app_attest.errors import InvalidChallengeError


def compute_client_data_hash(challenge: str) -> bytes:
    """
    Derive the client data hash bound into attestations and assertions.

    Args:
        challenge: Challenge string issued by the verifier

    Returns:
        SHA-256 digest of the challenge's UTF-8 bytes

    Raises:
        InvalidChallengeError: If the challenge cannot be encoded
    """
    if not isinstance(challenge, str):
        raise InvalidChallengeError()
    try:
        challenge_data = challenge.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidChallengeError() from e
    return hashlib.sha256(challenge_data).digest()


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class Challenge(BaseModel):
    """Single-use challenge issued by GET /attest/challenge."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    value: str = Field(alias="challenge", min_length=1)

    def digest(self) -> bytes:
        # Recomputed on every call; a round never reuses another round's hash.
        return compute_client_data_hash(self.value)


class KeyRecord(BaseModel):
    """The device's attested key and how many assertions the verifier has counted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    identifier: str = Field(alias="id", min_length=1)
    usage_count: int = Field(default=0, alias="count", ge=0)

    def with_count(self, usage_count: int) -> "KeyRecord":
        return KeyRecord(identifier=self.identifier, usage_count=usage_count)

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True)


class ValidateAttestationRequest(BaseModel):
    """Body of POST /attest/validate."""

    model_config = ConfigDict(populate_by_name=True)

    attestation: str
    key_id: str = Field(alias="keyId")
    client_data_hash: str = Field(alias="clientDataHash")
    app_id: str = Field(alias="appId")
    user_id: str = Field(alias="userId")


class VerifyAssertionRequest(BaseModel):
    """Body of POST /attest/verify."""

    model_config = ConfigDict(populate_by_name=True)

    assertion: str
    key_id: str = Field(alias="keyId")
    client_data_hash: str = Field(alias="clientDataHash")
    app_id: str = Field(alias="appId")
    challenge: str


class AttestationPayload(BaseModel):
    """Everything needed to validate a freshly generated key."""

    model_config = ConfigDict(frozen=True)

    blob: bytes
    key_identifier: str
    digest: bytes
    app_identifier: str
    principal: str

    def to_request(self) -> ValidateAttestationRequest:
        return ValidateAttestationRequest(
            attestation=b64encode(self.blob),
            key_id=self.key_identifier,
            client_data_hash=b64encode(self.digest),
            app_id=self.app_identifier,
            user_id=self.principal,
        )


class AssertionPayload(BaseModel):
    """Everything needed to prove possession of an enrolled key."""

    model_config = ConfigDict(frozen=True)

    blob: bytes
    key_identifier: str
    digest: bytes
    app_identifier: str
    challenge: str

    def to_request(self) -> VerifyAssertionRequest:
        return VerifyAssertionRequest(
            assertion=b64encode(self.blob),
            key_id=self.key_identifier,
            client_data_hash=b64encode(self.digest),
            app_id=self.app_identifier,
            challenge=self.challenge,
        )


class VerifierResult(BaseModel):
    """Response of the validate and verify endpoints."""

    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.result is None and self.error is None
