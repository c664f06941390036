"""
Error taxonomy for the attestation client.

Every step of the enroll/assert flow either produces a value or raises one of
these. Each error carries a human-readable message suitable for showing to
the user as-is.
"""


class AppAttestError(Exception):
    """Base class for all attestation client errors."""

    default_message = "App attestation failed."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(AppAttestError):
    """Custom exception for invalid client configuration."""

    default_message = "The attestation client is misconfigured."


class UnsupportedDeviceError(AppAttestError):
    """The device has no usable key attestation capability."""

    default_message = "This device does not support App Attest."


class TransportError(AppAttestError):
    """Network-level failure talking to the verifier."""

    default_message = "The attestation server could not be reached."


class DecodingError(AppAttestError):
    """The verifier answered with a body of the wrong shape."""

    default_message = "The attestation server returned a malformed response."


class InvalidChallengeError(AppAttestError):
    """A client data hash could not be derived from the challenge."""

    default_message = "Challenge data could not be hashed."


class MissingKeyError(AppAttestError):
    """An assertion was requested but no key has been enrolled."""

    default_message = "The key identifier could not be retrieved."


class ServerError(AppAttestError):
    """The verifier explicitly rejected the request."""

    default_message = "The attestation server rejected the request."


class AttestationError(AppAttestError):
    """The platform could not attest the key."""

    default_message = "The key could not be attested."


class KeyAssertionError(AppAttestError):
    """The platform could not produce an assertion for the key."""

    default_message = "An assertion could not be generated for the key."


class KeyAlreadyEnrolledError(AppAttestError):
    """Enroll was requested while a key is already stored."""

    default_message = "A key is already enrolled. Delete it before generating a new one."


class OperationInProgressError(AppAttestError):
    """Another enroll, assert or clear is still running."""

    default_message = "Another attestation operation is already in progress."


class KeyStoreError(AppAttestError):
    """The key record could not be persisted."""

    default_message = "The key record could not be saved."
