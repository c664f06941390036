#!/usr/bin/env python3
"""
App Attest command line driver

Usage:
    app-attest status
    app-attest enroll
    app-attest assert
    app-attest clear

Only one operation runs per invocation; a failed operation leaves the stored
key record untouched and can simply be re-run.
"""

import argparse
import json
import sys
from typing import List, Optional

import structlog
from pydantic import ValidationError

from app_attest.config import Settings, get_settings
from app_attest.errors import AppAttestError
from app_attest.flow import AttestationFlow
from app_attest.logging_config import configure_logging
from app_attest.telemetry import setup_opentelemetry
from app_attest.utils.tpm2_utils import TPM2KeyAttestation

logger = structlog.get_logger(__name__)


def load_settings(env_file: Optional[str] = None) -> Settings:
    if env_file:
        return Settings(_env_file=env_file)
    return get_settings()


def build_flow(settings: Settings) -> AttestationFlow:
    """Wire the TPM-backed primitive and verifier clients into a flow."""
    return AttestationFlow.from_settings(settings, TPM2KeyAttestation.from_settings(settings))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="app-attest",
        description="Enroll a device-bound key with the attestation server and assert possession of it.",
    )
    parser.add_argument("--env-file", help="Read settings from this .env file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("status", help="Show the stored key identifier and assertion count")
    subparsers.add_parser("enroll", help="Generate and attest a new key")
    subparsers.add_parser("assert", help="Assert the stored key")
    subparsers.add_parser("clear", help="Delete the stored key identifier")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings(args.env_file)
    except ValidationError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level, settings.log_format)
    setup_opentelemetry(settings)

    try:
        flow = build_flow(settings)

        if args.command == "status":
            print(json.dumps(flow.status(), indent=2))

        elif args.command == "enroll":
            record = flow.enroll()
            print(f"✅ Key generated and attested: {record.identifier}")

        elif args.command == "assert":
            record = flow.assert_key()
            print(f"✅ Key assertion verified! Assertion count: {record.usage_count}")

        elif args.command == "clear":
            flow.clear()
            print("✅ Stored key identifier deleted")

    except AppAttestError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
