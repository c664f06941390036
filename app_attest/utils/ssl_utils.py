"""
SSL/TLS utilities for the verifier transport.
Builds the shared HTTP session and applies the configured certificate trust policy.
"""

from datetime import datetime, timezone

import requests
import structlog
import urllib3
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from app_attest import __version__
from app_attest.config import Settings, TLSPolicy
from app_attest.errors import ConfigurationError

logger = structlog.get_logger(__name__)


class SSLError(ConfigurationError):
    """Custom exception for SSL-related errors."""

    default_message = "The TLS configuration is invalid."


class SSLUtils:
    """SSL utility class for transport construction and certificate checks."""

    @staticmethod
    def inspect_ca_certificate(ca_cert_path: str) -> x509.Certificate:
        """
        Load and sanity-check a pinned CA or self-signed server certificate.

        Args:
            ca_cert_path: Path to a PEM encoded certificate

        Returns:
            The parsed certificate

        Raises:
            SSLError: If the file is missing, unparsable or expired
        """
        try:
            with open(ca_cert_path, "rb") as cert_file:
                cert = x509.load_pem_x509_certificate(cert_file.read())
        except (OSError, ValueError) as e:
            logger.error("Failed to load CA certificate", ca_cert_path=ca_cert_path, error=str(e))
            raise SSLError(f"CA certificate could not be loaded: {e}") from e

        now = datetime.now(timezone.utc)
        if cert.not_valid_after_utc < now:
            raise SSLError(f"CA certificate expired on {cert.not_valid_after_utc.isoformat()}")

        logger.info(
            "Pinned CA certificate loaded",
            subject=cert.subject.rfc4514_string(),
            not_valid_after=cert.not_valid_after_utc.isoformat(),
            fingerprint=cert.fingerprint(hashes.SHA256()).hex()[:16],
        )
        return cert

    @staticmethod
    def create_session(settings: Settings) -> requests.Session:
        """
        Create the HTTP session used for every verifier request.

        Args:
            settings: Client settings carrying the TLS policy

        Returns:
            Configured requests session
        """
        session = requests.Session()
        session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"app-attest-client/{__version__}",
        })

        policy = settings.tls_policy
        if policy is TLSPolicy.TRUST_ALL:
            if settings.is_production:
                raise SSLError("tls_policy 'trust_all' is not allowed in production")
            logger.warning(
                "Allowing untrusted server certificates for verifier",
                verifier_base_url=settings.verifier_base_url,
            )
            session.verify = False
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        elif policy is TLSPolicy.CA_BUNDLE:
            SSLUtils.inspect_ca_certificate(settings.ca_cert_path)
            session.verify = settings.ca_cert_path
        else:
            session.verify = True

        logger.debug("Verifier session created", tls_policy=policy.value)
        return session
