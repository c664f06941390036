"""
Durable storage for the device's single attested key record.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from app_attest.errors import KeyStoreError
from app_attest.logging_config import short
from app_attest.models import KeyRecord

logger = structlog.get_logger(__name__)

KEY_RECORD_KEY = "keyID"


class KeyStore:
    """
    Single-slot store for the attested key record.

    The record lives under one well-known key of an application-scoped JSON
    defaults file. save() and clear() rewrite the file atomically before
    returning; other keys in the file are left untouched.
    """

    def __init__(self, path: str):
        self.path = Path(os.path.expanduser(path))

    def load(self) -> Optional[KeyRecord]:
        """
        Load the stored key record.

        Returns:
            The record, or None if nothing (or nothing decodable) is stored
        """
        raw = self._read_defaults().get(KEY_RECORD_KEY)
        if raw is None:
            logger.debug("No key record stored", path=str(self.path))
            return None

        try:
            return KeyRecord.model_validate(raw)
        except ValidationError as e:
            logger.warning("Failed to decode stored key record", path=str(self.path), error=str(e))
            return None

    def save(self, record: KeyRecord) -> None:
        """Replace the stored key record."""
        defaults = self._read_defaults()
        defaults[KEY_RECORD_KEY] = record.to_storage()
        self._write_defaults(defaults)
        logger.info("Key record saved", key_id=short(record.identifier), count=record.usage_count)

    def clear(self) -> None:
        """Remove the stored key record, if any."""
        defaults = self._read_defaults()
        if defaults.pop(KEY_RECORD_KEY, None) is None:
            return
        self._write_defaults(defaults)
        logger.info("Key record cleared", path=str(self.path))

    def _read_defaults(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                defaults = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Defaults file unreadable, starting empty", path=str(self.path), error=str(e))
            return {}

        if not isinstance(defaults, dict):
            logger.warning("Defaults file is not a JSON object, starting empty", path=str(self.path))
            return {}
        return defaults

    def _write_defaults(self, defaults: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=self.path.name, suffix=".tmp", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                    json.dump(defaults, tmp_file, indent=2)
                    tmp_file.flush()
                    os.fsync(tmp_file.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error("Failed to write defaults file", path=str(self.path), error=str(e))
            raise KeyStoreError(f"The key record could not be saved: {e}") from e
