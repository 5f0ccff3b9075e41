"""
Offline cache for normalised analytics responses.

Entries live as ``{key}.json`` files (``{"data", "cachedAt", "expiresAt"}``)
in the shared directory so the widget process can read them too.

Keys: ``{kind}_{scope}_{dateRangeId}[_{subtype}]``. The scope is
``{accountId}.{websiteId}`` (just ``{accountId}`` for website lists), so two
accounts tracking the same site id never collide. Each part is escaped
reversibly, so distinct ids always give distinct keys.

Staleness is reported, never enforced: ``load`` returns expired data with
``is_expired=True`` and leaves the file alone. Only ``clear_expired`` evicts.
"""
from __future__ import annotations

import json
import logging
import re
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from insightflow.errors import CacheError, DecodeError
from insightflow.fileio import write_bytes_atomic

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
SPARKLINE_TTL = 900
ALLOWED_TTLS = (DEFAULT_TTL, SPARKLINE_TTL)

# "_" separates key parts and "." the account from the website, so a part
# keeps only letters and digits; every other byte becomes "-XX" (hex)
_PLAIN = frozenset(string.ascii_letters + string.digits)
_VALID_KEY = re.compile(r"[A-Za-z0-9._\-]+")


class CacheKind(str, Enum):
    WEBSITES = "websites"
    STATS = "stats"
    SPARKLINE = "sparkline"
    METRICS = "metrics"

    @property
    def ttl(self) -> int:
        return SPARKLINE_TTL if self == CacheKind.SPARKLINE else DEFAULT_TTL


def _escape(char: str) -> str:
    if char in _PLAIN:
        return char
    return "".join(f"-{byte:02X}" for byte in char.encode("utf-8"))


def _part(value: str) -> str:
    return "".join(_escape(char) for char in str(value))


def scope(account_id: str, website_id: Optional[str] = None) -> str:
    if website_id is None:
        return _part(account_id)
    return f"{_part(account_id)}.{_part(website_id)}"


def websites_key(account_id: str) -> str:
    return f"{CacheKind.WEBSITES.value}_{scope(account_id)}"


def stats_key(account_id: str, website_id: str, date_range_id: str) -> str:
    return f"{CacheKind.STATS.value}_{scope(account_id, website_id)}_{_part(date_range_id)}"


def sparkline_key(account_id: str, website_id: str, date_range_id: str) -> str:
    return f"{CacheKind.SPARKLINE.value}_{scope(account_id, website_id)}_{_part(date_range_id)}"


def metrics_key(account_id: str, website_id: str, date_range_id: str, metric: str) -> str:
    return f"{CacheKind.METRICS.value}_{scope(account_id, website_id)}_{_part(date_range_id)}_{_part(metric)}"


def kind_of(key: str) -> Optional[CacheKind]:
    try:
        return CacheKind(key.split("_", 1)[0])
    except ValueError:
        return None


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    cached_at: datetime
    expires_at: datetime
    is_expired: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("bytes", "KB", "MB", "GB"):
        if value < 1000 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "bytes" else f"{value:.1f} {unit}"
        value /= 1000
    return f"{size} bytes"


class OfflineCache:
    def __init__(self, directory: Path, clock: Callable[[], datetime] = _utcnow) -> None:
        self.directory = Path(directory)
        self._clock = clock

    def _path(self, key: str) -> Path:
        if not _VALID_KEY.fullmatch(key or ""):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.directory / f"{key}.json"

    def _files(self) -> Iterator[Path]:
        if not self.directory.is_dir():
            return iter(())
        return self.directory.glob("*.json")

    def save(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store ``value`` (JSON-serialisable) under ``key``. ``ttl`` defaults to
        the key kind's TTL and may only be one of ALLOWED_TTLS. Returns False
        when the write failed; the failure is logged, never raised.
        """
        if ttl is None:
            kind = kind_of(key)
            ttl = kind.ttl if kind else DEFAULT_TTL
        if ttl not in ALLOWED_TTLS:
            raise ValueError(f"Unsupported cache TTL {ttl}; use one of {ALLOWED_TTLS}")

        now = self._clock()
        wrapper = {
            "data": value,
            "cachedAt": now.isoformat(),
            "expiresAt": (now + timedelta(seconds=ttl)).isoformat(),
        }
        try:
            self._write(self._path(key), wrapper)
        except CacheError as e:
            logger.warning("Cache save failed for %s: %s", key, e)
            return False
        logger.debug("Cached %s (ttl %ss)", key, ttl)
        return True

    def _write(self, path: Path, wrapper: Dict[str, Any]) -> None:
        try:
            payload = json.dumps(wrapper).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise CacheError(f"value is not JSON serialisable: {e}") from e
        try:
            write_bytes_atomic(path, payload, mode=0o644)
        except OSError as e:
            raise CacheError(str(e)) from e

    def _read(self, path: Path) -> CacheEntry:
        try:
            raw = json.loads(path.read_bytes())
            cached_at = datetime.fromisoformat(raw["cachedAt"])
            expires_at = datetime.fromisoformat(raw["expiresAt"])
            data = raw["data"]
            if cached_at.tzinfo is None or expires_at.tzinfo is None:
                raise ValueError("timestamps carry no UTC offset")
            is_expired = self._clock() > expires_at
        except (ValueError, KeyError, TypeError) as e:
            raise DecodeError(f"Corrupt cache entry {path.name}: {e}") from e
        return CacheEntry(data=data, cached_at=cached_at, expires_at=expires_at, is_expired=is_expired)

    def load(self, key: str) -> Optional[CacheEntry]:
        """Return the entry (possibly expired) or None when absent or unreadable."""
        path = self._path(key)
        try:
            return self._read(path)
        except FileNotFoundError:
            return None
        except DecodeError as e:
            logger.warning("%s; removing it", e)
            self._unlink(path)
            return None
        except OSError as e:
            logger.warning("Cache load failed for %s: %s", key, e)
            return None

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not delete cache file %s: %s", path.name, e)
            return False

    def delete(self, key: str) -> None:
        self._unlink(self._path(key))

    def clear_all(self) -> int:
        removed = sum(1 for path in list(self._files()) if self._unlink(path))
        logger.info("Cleared all cache (%d entries)", removed)
        return removed

    def clear_expired(self) -> int:
        """Delete expired and corrupt entries. Returns the number removed."""
        removed = 0
        for path in list(self._files()):
            try:
                expired = self._read(path).is_expired
            except DecodeError:
                expired = True
            except OSError as e:
                logger.warning("Skipping unreadable cache file %s: %s", path.name, e)
                continue
            if expired and self._unlink(path):
                removed += 1
        if removed:
            logger.info("Cleared %d expired cache entries", removed)
        return removed

    def _remove_where(self, predicate: Callable[[str, Optional[str]], bool]) -> int:
        """Delete entries whose (account, website) scope satisfies ``predicate``."""
        removed = 0
        for path in list(self._files()):
            parts = path.stem.split("_")
            if len(parts) < 2:
                continue
            account, _, website = parts[1].partition(".")
            if predicate(account, website or None) and self._unlink(path):
                removed += 1
        return removed

    def clear_for_website(self, website_id: str) -> int:
        website = _part(website_id)
        removed = self._remove_where(lambda _account, site: site == website)
        logger.info("Cleared cache for website %s (%d entries)", website_id, removed)
        return removed

    def clear_for_account(self, account_id: str) -> int:
        account = _part(account_id)
        removed = self._remove_where(lambda entry_account, _site: entry_account == account)
        logger.info("Cleared cache for account %s (%d entries)", account_id, removed)
        return removed

    def size_bytes(self) -> int:
        total = 0
        for path in self._files():
            try:
                total += path.stat().st_size
            except OSError:
                continue
        return total

    def formatted_size(self) -> str:
        return format_bytes(self.size_bytes())
