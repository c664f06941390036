"""
TPM2 utilities for device-bound key generation, attestation and assertion.
Implements the key attestation contract on a TPM 2.0 (or swtpm) through tpm2-tools.
"""

import base64
import binascii
import hashlib
import json
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

import structlog
from cryptography.hazmat.primitives import serialization

from app_attest.config import Settings
from app_attest.errors import AppAttestError, AttestationError, KeyAssertionError, UnsupportedDeviceError
from app_attest.logging_config import short
from app_attest.primitive import KeyAttestationPrimitive

logger = structlog.get_logger(__name__)

PRIMARY_TEMPLATE = ["-C", "o", "-g", "sha256", "-G", "ecc"]
KEY_ALGORITHM = "ecc256:ecdsa-sha256"
KEY_ATTRIBUTES = "fixedtpm|fixedparent|sensitivedataorigin|userwithauth|sign"


class TPM2Error(AppAttestError):
    """Custom exception for TPM2-related errors."""

    default_message = "A TPM2 command failed."


class TPM2KeyAttestation(KeyAttestationPrimitive):
    """
    Key attestation backed by tpm2-tools.

    Keys are ECC P-256 signing keys created under a deterministic owner
    primary; their public/private blobs are kept in the work directory and
    loaded on demand. The key identifier is the base64 SHA-256 of the key's
    DER SubjectPublicKeyInfo. Attestations are TPM2_Certify statements signed
    by the persistent attestation key with the client data hash as
    qualifying data; assertions are plain ECDSA signatures over the hash.
    """

    def __init__(self, work_dir: str, tcti: str, ak_handle: str = "0x8101000A"):
        """
        Initialize TPM2 key attestation.

        Args:
            work_dir: Directory holding key blobs
            tcti: TPM2TOOLS_TCTI value, e.g. device:/dev/tpmrm0 or swtpm:host=...,port=...
            ak_handle: Persistent handle of the attestation key used for certification
        """
        self.work_dir = Path(os.path.expanduser(work_dir))
        self.tcti = tcti
        self.ak_handle = ak_handle

    @classmethod
    def from_settings(cls, settings: Settings) -> "TPM2KeyAttestation":
        return cls(settings.tpm_work_dir, settings.tpm2tools_tcti, settings.ak_handle)

    def is_supported(self) -> bool:
        if shutil.which("tpm2_getcap") is None:
            logger.info("tpm2-tools not installed")
            return False
        try:
            return_code, _, stderr = self._run_tpm2_command(["tpm2_getcap", "properties-fixed"])
        except TPM2Error:
            return False
        if return_code != 0:
            logger.info("TPM not accessible", tcti=self.tcti, stderr=stderr.strip())
            return False
        return True

    def generate_key(self) -> str:
        keys_dir = self.work_dir / "keys"
        keys_dir.mkdir(parents=True, exist_ok=True)

        staging = Path(tempfile.mkdtemp(prefix="new-key-", dir=self.work_dir))
        try:
            primary_ctx = self._create_primary(staging, UnsupportedDeviceError)
            self._check(
                [
                    "tpm2_create", "-C", str(primary_ctx),
                    "-G", KEY_ALGORITHM,
                    "-a", KEY_ATTRIBUTES,
                    "-u", str(staging / "key.pub"),
                    "-r", str(staging / "key.priv"),
                ],
                UnsupportedDeviceError,
            )
            key_ctx = self._load_key(staging, primary_ctx, UnsupportedDeviceError)
            self._check(
                ["tpm2_readpublic", "-c", str(key_ctx), "-f", "pem", "-o", str(staging / "key.pem")],
                UnsupportedDeviceError,
            )

            key_digest = self._public_key_digest((staging / "key.pem").read_bytes())
            for transient in (primary_ctx, key_ctx):
                transient.unlink(missing_ok=True)

            key_dir = keys_dir / key_digest.hex()
            if key_dir.exists():
                raise UnsupportedDeviceError("The TPM returned a key that is already enrolled.")
            staging.rename(key_dir)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        identifier = base64.b64encode(key_digest).decode("ascii")
        logger.info("TPM key generated", key_id=short(identifier))
        return identifier

    def attest_key(self, identifier: str, digest: bytes) -> bytes:
        key_dir = self._key_dir(identifier)
        if key_dir is None:
            raise AttestationError("The key identifier is unknown to the TPM.")

        with tempfile.TemporaryDirectory(dir=self.work_dir) as td:
            work = Path(td)
            primary_ctx = self._create_primary(work, AttestationError)
            key_ctx = self._load_key(key_dir, primary_ctx, AttestationError, ctx_dir=work)
            self._check(
                [
                    "tpm2_certify",
                    "-c", str(key_ctx),
                    "-C", self.ak_handle,
                    "-g", "sha256",
                    "-q", digest.hex(),
                    "-o", str(work / "certify.attest"),
                    "-s", str(work / "certify.sig"),
                    "-f", "plain",
                ],
                AttestationError,
            )

            blob = {
                "format": "tpm2-certify",
                "certify_info": _b64_file(work / "certify.attest"),
                "signature": _b64_file(work / "certify.sig"),
                "public_key_pem": (key_dir / "key.pem").read_text(),
            }

        logger.info("TPM key certified", key_id=short(identifier))
        return json.dumps(blob, sort_keys=True).encode("utf-8")

    def generate_assertion(self, identifier: str, digest: bytes) -> bytes:
        key_dir = self._key_dir(identifier)
        if key_dir is None:
            raise KeyAssertionError("The key identifier is unknown to the TPM.")

        with tempfile.TemporaryDirectory(dir=self.work_dir) as td:
            work = Path(td)
            (work / "client_data.hash").write_bytes(digest)
            primary_ctx = self._create_primary(work, KeyAssertionError)
            key_ctx = self._load_key(key_dir, primary_ctx, KeyAssertionError, ctx_dir=work)
            self._check(
                [
                    "tpm2_sign",
                    "-c", str(key_ctx),
                    "-g", "sha256",
                    "-d",
                    "-f", "plain",
                    "-o", str(work / "assertion.sig"),
                    str(work / "client_data.hash"),
                ],
                KeyAssertionError,
            )
            blob = {
                "format": "tpm2-sign",
                "signature": _b64_file(work / "assertion.sig"),
            }

        logger.info("TPM assertion generated", key_id=short(identifier))
        return json.dumps(blob, sort_keys=True).encode("utf-8")

    def _key_dir(self, identifier: str) -> Optional[Path]:
        try:
            key_digest = base64.b64decode(identifier, validate=True)
        except (binascii.Error, ValueError):
            return None
        if len(key_digest) != hashlib.sha256().digest_size:
            return None
        key_dir = self.work_dir / "keys" / key_digest.hex()
        return key_dir if (key_dir / "key.pub").exists() else None

    def _create_primary(self, directory: Path, error_cls) -> Path:
        primary_ctx = directory / "primary.ctx"
        self._check(["tpm2_createprimary", *PRIMARY_TEMPLATE, "-c", str(primary_ctx)], error_cls)
        return primary_ctx

    def _load_key(self, key_dir: Path, primary_ctx: Path, error_cls, ctx_dir: Path = None) -> Path:
        key_ctx = (ctx_dir or key_dir) / "key.ctx"
        self._check(
            [
                "tpm2_load", "-C", str(primary_ctx),
                "-u", str(key_dir / "key.pub"),
                "-r", str(key_dir / "key.priv"),
                "-c", str(key_ctx),
            ],
            error_cls,
        )
        return key_ctx

    @staticmethod
    def _public_key_digest(public_pem: bytes) -> bytes:
        public_key = serialization.load_pem_public_key(public_pem)
        der = public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return hashlib.sha256(der).digest()

    def _check(self, command: List[str], error_cls) -> str:
        try:
            return_code, stdout, stderr = self._run_tpm2_command(command)
        except TPM2Error as e:
            raise error_cls(str(e)) from e
        if return_code != 0:
            logger.error("TPM2 command failed", command=command[0], stderr=stderr.strip())
            raise error_cls(f"{command[0]} failed: {stderr.strip()}")
        return stdout

    def _run_tpm2_command(self, command: List[str]) -> Tuple[int, str, str]:
        """
        Run a TPM2 command and return the result.

        Args:
            command: List of command arguments

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        env = os.environ.copy()
        env["TPM2TOOLS_TCTI"] = self.tcti

        logger.debug("Running TPM2 command", command=" ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=False,
                env=env,
            )
            return result.returncode, result.stdout, result.stderr
        except (OSError, subprocess.SubprocessError) as e:
            logger.error("Failed to run TPM2 command", command=command[0], error=str(e))
            raise TPM2Error(f"TPM2 command failed: {e}") from e


def _b64_file(path: Path) -> str:
    return base64.b64encode(path.read_bytes()).decode("ascii")
