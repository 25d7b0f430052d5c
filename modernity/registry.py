"""Client for the crates.io release-history API."""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urljoin
from urllib.request import Request, urlopen

from .config import RegistryConfig
from .errors import LibraryNotFound, RegistryUnavailable
from .logging import get_logger
from .models import Release

logger = get_logger("registry")

_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
_MAX_PAGES = 1000


class Registry(Protocol):
    """Anything that can list the published releases of a crate."""

    def releases(self, name: str) -> List[Release]:
        ...


class CratesIoRegistry:
    """Lists releases through ``GET {base}/crates/{name}/versions``."""

    def __init__(
        self,
        config: RegistryConfig | None = None,
        *,
        opener: Callable[..., Any] = urlopen,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or RegistryConfig()
        self._opener = opener
        self._sleep = sleep

    def releases(self, name: str) -> List[Release]:
        endpoint = f"{self._config.base_url.rstrip('/')}/crates/{quote(name, safe='')}/versions"
        url: Optional[str] = endpoint
        releases: List[Release] = []
        pages = 0
        while url is not None and pages < _MAX_PAGES:
            payload = self._get_json(url, name)
            pages += 1
            versions = payload.get("versions")
            if not isinstance(versions, list):
                raise RegistryUnavailable(f"registry response for '{name}' has no version list")
            for raw in versions:
                release = self._parse_release(raw)
                if release is not None:
                    releases.append(release)
            url = _next_page(endpoint, payload)
        logger.debug("Registry lists %d releases of %s", len(releases), name)
        return releases

    def _get_json(self, url: str, name: str) -> Dict[str, Any]:
        headers = {"User-Agent": self._config.user_agent, "Accept": "application/json"}
        backoff = self._config.backoff
        attempts = max(1, self._config.retries)
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                request = Request(url, headers=headers, method="GET")
                with self._opener(request, timeout=self._config.timeout) as response:
                    body = response.read()
            except HTTPError as exc:
                if exc.code == 404:
                    raise LibraryNotFound(name) from exc
                last_error = exc
                if exc.code not in _RETRY_STATUSES:
                    break
                logger.warning(
                    "HTTP %d from %s, retrying in %.1f seconds (attempt %d/%d)",
                    exc.code,
                    url,
                    backoff,
                    attempt,
                    attempts,
                )
            except (URLError, OSError) as exc:
                last_error = exc
                logger.warning(
                    "Network error: %s, retrying in %.1f seconds (attempt %d/%d)",
                    exc,
                    backoff,
                    attempt,
                    attempts,
                )
            else:
                try:
                    payload = json.loads(body.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                    raise RegistryUnavailable(f"registry returned invalid JSON for '{name}'") from exc
                if not isinstance(payload, dict):
                    raise RegistryUnavailable(f"registry returned an unexpected document for '{name}'")
                return payload
            if attempt < attempts:
                self._sleep(backoff)
                backoff *= 2
        raise RegistryUnavailable(f"registry request failed after {attempts} attempts: {last_error}") from last_error

    def _parse_release(self, raw: Any) -> Optional[Release]:
        if not isinstance(raw, dict):
            return None
        number = raw.get("num")
        created = parse_timestamp(raw.get("created_at"))
        if not isinstance(number, str) or created is None:
            logger.debug("Ignoring malformed release entry %r", raw)
            return None
        dl_path = raw.get("dl_path")
        if isinstance(dl_path, str) and dl_path:
            archive_url = urljoin(self._config.base_url, dl_path)
        else:
            archive_url = f"{self._config.base_url.rstrip('/')}/crates/{raw.get('crate', '')}/{number}/download"
        return Release(
            version=number,
            published_at=created,
            yanked=bool(raw.get("yanked", False)),
            archive_url=archive_url,
        )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _next_page(endpoint: str, payload: Dict[str, Any]) -> Optional[str]:
    meta = payload.get("meta")
    if not isinstance(meta, dict):
        return None
    next_page = meta.get("next_page")
    if not isinstance(next_page, str) or not next_page:
        return None
    if next_page.startswith("?"):
        return endpoint + next_page
    return urljoin(endpoint, next_page)


__all__ = ["CratesIoRegistry", "Registry", "parse_timestamp"]
