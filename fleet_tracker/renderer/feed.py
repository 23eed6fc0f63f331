"""
Update sources for the live map.

- RedisChangeFeed: pattern subscription to the per-fleet-code channels the
  API publishes on after each committed write. Best-effort: on any error it
  logs, waits and resubscribes.
- SnapshotPoller: periodic GET of the live snapshot, the fallback when the
  feed is down or has dropped messages.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import httpx

from fleet_tracker.app.core.config import settings
from fleet_tracker.app.schemas.fleet import LiveFleetResponse

logger = logging.getLogger("fleet_tracker.renderer.feed")

FeedHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value or ""


class RedisChangeFeed:
    """Listens on `{prefix}:{fleet_code}:*` for the given codes (all codes if none)."""

    def __init__(
        self,
        redis,
        fleet_codes: Optional[Iterable[str]] = None,
        prefix: str = None,
        retry_delay: float = 1.0,
    ):
        self._redis = redis
        self._prefix = prefix or settings.feed_channel_prefix
        self._fleet_codes = sorted(set(fleet_codes or []))
        self._retry_delay = retry_delay

    @property
    def patterns(self) -> List[str]:
        if not self._fleet_codes:
            return [f"{self._prefix}:*"]
        return [f"{self._prefix}:{code}:*" for code in self._fleet_codes]

    async def listen(self, handler: FeedHandler) -> None:
        """Deliver decoded messages to `handler` until cancelled."""
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.psubscribe(*self.patterns)
                logger.info("Subscribed to %s", ", ".join(self.patterns))
                while True:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message is None:
                        continue
                    await self._dispatch(message, handler)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Change feed dropped, resubscribing in %.1fs", self._retry_delay, exc_info=True)
                await asyncio.sleep(self._retry_delay)
            finally:
                await pubsub.aclose()

    async def _dispatch(self, message: Dict[str, Any], handler: FeedHandler) -> None:
        if message.get("type") not in ("message", "pmessage"):
            return

        channel = _decode(message.get("channel"))
        try:
            payload = json.loads(_decode(message.get("data")))
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON message on %s", channel)
            return

        if isinstance(payload, dict):
            await handler(channel, payload)

    async def close(self) -> None:
        """Nothing to release: each listen() pass closes its own pubsub."""
        return None


class SnapshotPoller:
    """Reads GET /{api_version}/fleet/live with the dispatcher's bearer token."""

    def __init__(
        self,
        base_url: str = "",
        token: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def fetch(self) -> LiveFleetResponse:
        response = await self.client.get(f"/{settings.api_version}/fleet/live")
        response.raise_for_status()
        return LiveFleetResponse.model_validate(response.json())

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
