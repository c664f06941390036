"""
Contract of the platform key attestation capability.

The hardware/OS layer behind this interface is untrusted from the client's
point of view: blobs it returns are forwarded to the verifier unread.
"""

from abc import ABC, abstractmethod


class KeyAttestationPrimitive(ABC):
    """Device-bound key generation, attestation and assertion."""

    @abstractmethod
    def is_supported(self) -> bool:
        """Report whether the device can attest keys. Must not have side effects."""

    @abstractmethod
    def generate_key(self) -> str:
        """
        Generate a new device-bound key.

        Returns:
            Opaque key identifier, unique on this device

        Raises:
            UnsupportedDeviceError: If the device cannot generate keys
        """

    @abstractmethod
    def attest_key(self, identifier: str, digest: bytes) -> bytes:
        """
        Bind the client data hash to the key.

        Raises:
            AttestationError: If the key is unknown or the platform refuses
        """

    @abstractmethod
    def generate_assertion(self, identifier: str, digest: bytes) -> bytes:
        """
        Prove possession of an enrolled key over the client data hash.

        Raises:
            KeyAssertionError: If the key is unknown to the platform
        """
