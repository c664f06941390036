"""
Client for hardware-backed app attestation.

Provisions a device-bound key, proves it to a remote verifier, and later
re-proves possession of the key through assertions.
"""

__version__ = "1.0.0"

from app_attest.errors import (  # noqa: E402
    AppAttestError,
    AttestationError,
    ConfigurationError,
    DecodingError,
    InvalidChallengeError,
    KeyAlreadyEnrolledError,
    KeyAssertionError,
    KeyStoreError,
    MissingKeyError,
    OperationInProgressError,
    ServerError,
    TransportError,
    UnsupportedDeviceError,
)
from app_attest.flow import AttestationFlow, FlowState  # noqa: E402
from app_attest.key_store import KeyStore  # noqa: E402
from app_attest.models import KeyRecord, compute_client_data_hash  # noqa: E402
from app_attest.primitive import KeyAttestationPrimitive  # noqa: E402

__all__ = [
    "AppAttestError",
    "AttestationError",
    "AttestationFlow",
    "ConfigurationError",
    "DecodingError",
    "FlowState",
    "InvalidChallengeError",
    "KeyAlreadyEnrolledError",
    "KeyAssertionError",
    "KeyAttestationPrimitive",
    "KeyRecord",
    "KeyStore",
    "KeyStoreError",
    "MissingKeyError",
    "OperationInProgressError",
    "ServerError",
    "TransportError",
    "UnsupportedDeviceError",
    "compute_client_data_hash",
]
