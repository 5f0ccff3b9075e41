"""
Encrypted credentials projection read by the widget process.

The file ``widget_credentials.encrypted`` in the shared directory holds the
active account's server URL, bearer secret and widget choices as JSON sealed
with AES-GCM (12-byte nonce followed by ciphertext and tag). The 256-bit key
is generated once per installation and kept next to it in
``widget_credentials.key``. A plaintext ``widget_credentials.json`` left by
older versions is migrated on first read.

This file is the one deliberate global: both processes find it by path.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from insightflow.date_range import END_OF_DAY_OFFSET, TimeUnit, start_of_day
from insightflow.errors import DecodeError
from insightflow.fileio import write_bytes_atomic
from insightflow.models import ProviderType

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "widget_credentials.encrypted"
KEY_FILE = "widget_credentials.key"
LEGACY_FILE = "widget_credentials.json"
KEY_BYTES = 32
NONCE_BYTES = 12


class WidgetTimeRange(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"

    @property
    def days(self) -> int:
        return {"today": 0, "yesterday": 1, "7d": 6, "30d": 29}[self.value]

    @property
    def unit(self) -> TimeUnit:
        if self in (WidgetTimeRange.TODAY, WidgetTimeRange.YESTERDAY):
            return TimeUnit.HOUR
        return TimeUnit.DAY

    def bounds(self, now: datetime) -> Tuple[datetime, datetime]:
        start = start_of_day(now) - timedelta(days=self.days)
        if self == WidgetTimeRange.YESTERDAY:
            return start, start + END_OF_DAY_OFFSET
        return start, now

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["WidgetTimeRange"]:
        if not raw:
            return None
        # older app versions stored the German display labels
        legacy = {"Heute": cls.TODAY, "Gestern": cls.YESTERDAY, "7 Tage": cls.LAST_7_DAYS, "30 Tage": cls.LAST_30_DAYS}
        if raw in legacy:
            return legacy[raw]
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Ignoring unknown widget time range %r", raw)
            return None


@dataclass(frozen=True)
class WidgetCredentials:
    server_url: str
    token: str
    provider_type: ProviderType = ProviderType.UMAMI
    website_id: Optional[str] = None
    website_name: Optional[str] = None
    time_range: Optional[WidgetTimeRange] = None
    sites: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serverURL": self.server_url,
            "token": self.token,
            "providerType": self.provider_type.value,
            "websiteId": self.website_id,
            "websiteName": self.website_name,
            "timeRange": self.time_range.value if self.time_range else None,
            "sites": self.sites,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WidgetCredentials":
        try:
            return cls(
                server_url=str(data["serverURL"]),
                token=str(data["token"]),
                provider_type=ProviderType(data.get("providerType") or ProviderType.UMAMI.value),
                website_id=data.get("websiteId"),
                website_name=data.get("websiteName"),
                time_range=WidgetTimeRange.parse(data.get("timeRange")),
                sites=list(data["sites"]) if data.get("sites") is not None else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Invalid widget credentials: {e}") from e


class SharedCredentials:
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    @property
    def path(self) -> Path:
        return self.directory / CREDENTIALS_FILE

    @property
    def key_path(self) -> Path:
        return self.directory / KEY_FILE

    @property
    def legacy_path(self) -> Path:
        return self.directory / LEGACY_FILE

    def _load_key(self) -> Optional[bytes]:
        try:
            key = self.key_path.read_bytes()
        except FileNotFoundError:
            return None
        return key if len(key) == KEY_BYTES else None

    def _key(self) -> bytes:
        key = self._load_key()
        if key is None:
            key = AESGCM.generate_key(bit_length=256)
            write_bytes_atomic(self.key_path, key)
        return key

    def _encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_BYTES)
        return nonce + AESGCM(self._key()).encrypt(nonce, plaintext, None)

    def _decrypt(self, blob: bytes) -> bytes:
        key = self._load_key()
        if key is None or len(blob) <= NONCE_BYTES:
            raise DecodeError("Widget credentials cannot be decrypted")
        try:
            return AESGCM(key).decrypt(blob[:NONCE_BYTES], blob[NONCE_BYTES:], None)
        except InvalidTag as e:
            raise DecodeError("Widget credentials failed authentication") from e

    def save(self, credentials: WidgetCredentials) -> bool:
        try:
            plaintext = json.dumps(credentials.to_dict()).encode("utf-8")
            write_bytes_atomic(self.path, self._encrypt(plaintext))
        except OSError as e:
            logger.warning("Could not write widget credentials: %s", e)
            return False
        logger.debug("Saved encrypted widget credentials")
        return True

    def load(self) -> Optional[WidgetCredentials]:
        """Decrypt the projection; migrates the legacy plaintext file when only that exists."""
        try:
            blob = self.path.read_bytes()
        except FileNotFoundError:
            return self._migrate_legacy()
        except OSError as e:
            logger.warning("Could not read widget credentials: %s", e)
            return None
        try:
            return WidgetCredentials.from_dict(json.loads(self._decrypt(blob)))
        except (DecodeError, ValueError) as e:
            logger.warning("Discarding unreadable widget credentials: %s", e)
            return None

    def _migrate_legacy(self) -> Optional[WidgetCredentials]:
        try:
            data = json.loads(self.legacy_path.read_bytes())
            credentials = WidgetCredentials.from_dict(data)
        except FileNotFoundError:
            return None
        except (DecodeError, ValueError, OSError) as e:
            logger.warning("Ignoring unreadable legacy widget credentials: %s", e)
            return None
        if self.save(credentials):
            self._remove(self.legacy_path)
            logger.info("Migrated legacy widget credentials to the encrypted format")
        return credentials

    def _remove(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def delete(self) -> None:
        """Remove the projection, its key and any legacy file."""
        for path in (self.path, self.key_path, self.legacy_path):
            self._remove(path)
        logger.debug("Deleted widget credentials")
