"""
Utility modules for the attestation client.
"""

from .tpm2_utils import TPM2KeyAttestation, TPM2Error
from .ssl_utils import SSLUtils, SSLError

__all__ = ['TPM2KeyAttestation', 'TPM2Error', 'SSLUtils', 'SSLError']
