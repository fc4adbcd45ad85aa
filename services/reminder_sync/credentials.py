"""Session credential acquisition."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from services.reminder_sync.errors import CredentialUnavailable

logger = logging.getLogger(__name__)


class MemoryStore:
    """Key-value store kept in process, fed by the traffic tap or the agent API."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value


class JsonFileStore:
    """
    JSON object file shared with the host (for example a dump of the
    page's localStorage).

    The file is re-read on every lookup so rotated values are seen, and
    writes update only their own key.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_path, self.path)

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except ValueError as e:
            logger.warning(f"Credential storage file {self.path} is not valid JSON: {e}")
            return {}
        return data if isinstance(data, dict) else {}


class CredentialSource:
    """Reads the short-lived session token the host application keeps current."""

    def __init__(
        self,
        store,
        key: str,
        poll_interval: float = 0.25,
        max_wait: float = 10.0,
        token_field: str = "token"
    ):
        """
        Initialize the credential source.

        Args:
            store: Object with a get(key) method holding the token envelope
            key: Storage key of the envelope
            poll_interval: Seconds between lookups while the token is absent
            max_wait: Seconds to keep polling before giving up
            token_field: Field of the JSON envelope holding the token
        """
        self.store = store
        self.key = key
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.token_field = token_field

    def envelope(self, token: str) -> str:
        """Wrap a raw token the way the host stores it."""
        return json.dumps({self.token_field: token})

    async def acquire(self) -> str:
        """
        Return the current token, waiting for it to appear if necessary.

        Raises:
            CredentialUnavailable: If no token shows up within max_wait
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait

        while True:
            token = self._read_token()
            if token:
                return token

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.error(f"No session credential under '{self.key}' after {self.max_wait}s")
                raise CredentialUnavailable(
                    f"Session credential '{self.key}' unavailable after {self.max_wait} seconds"
                )

            await asyncio.sleep(min(self.poll_interval, remaining))

    def _read_token(self) -> Optional[str]:
        raw = self.store.get(self.key)
        if not raw:
            return None

        if isinstance(raw, dict):
            return raw.get(self.token_field) or None

        try:
            parsed = json.loads(raw)
        except ValueError:
            # Bare token, not an envelope
            return raw

        if isinstance(parsed, dict):
            return parsed.get(self.token_field) or None
        if isinstance(parsed, str):
            return parsed or None
        return None
