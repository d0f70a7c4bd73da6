"""
Jackpot Crank - Social Notifications

Publishes win/loss feed events to Tapestry when a round settles. The crank
is the only component that reliably observes settlement, so it owns this.

Contract:
    - Non-critical: publish_round_settled never raises.
    - Each event is retried once.
    - Content ids are findOrCreate keys, so a repeat publish is harmless.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

LOSS_EVENT_SPACING_SEC = 0.25


class RoundSettledEvent(BaseModel):
    round_id: int
    winner_wallet: str
    total_usdc: float  # human units
    participant_wallets: list[str]


class NotificationPublisher(ABC):

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def publish_round_settled(self, event: RoundSettledEvent) -> None:
        pass

    async def aclose(self) -> None:
        pass


class NullPublisher(NotificationPublisher):
    """Used when no notification service is configured."""

    @property
    def enabled(self) -> bool:
        return False

    async def publish_round_settled(self, event: RoundSettledEvent) -> None:
        return None


class TapestryPublisher(NotificationPublisher):
    """Tapestry REST API client."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.usetapestry.dev/api/v1",
        namespace: str = "winny",
        timeout: float = 6.0,
        client: Optional[httpx.AsyncClient] = None,
        spacing_sec: float = LOSS_EVENT_SPACING_SEC,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.namespace = namespace
        self.spacing_sec = spacing_sec
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _resolve_profile_id(self, wallet: str) -> Optional[str]:
        try:
            response = await self._client.post(
                f"{self.api_url}/profiles/findOrCreate",
                params={"apiKey": self.api_key},
                json={
                    "username": f"{self.namespace}-{wallet[:6].lower()}",
                    "walletAddress": wallet,
                    "blockchain": "SOLANA",
                },
            )
            if not response.is_success:
                return None
            profile = response.json().get("profile") or {}
            return profile.get("id")
        except (httpx.HTTPError, ValueError):
            return None

    async def _create_content(self, profile_id: str, content_id: str, properties: list[dict]) -> bool:
        try:
            response = await self._client.post(
                f"{self.api_url}/contents/findOrCreate",
                params={"apiKey": self.api_key},
                json={"id": content_id, "profileId": profile_id, "properties": properties},
            )
            return response.is_success
        except httpx.HTTPError:
            return False

    async def _publish(self, event: RoundSettledEvent, wallet: str, event_type: str) -> bool:
        profile_id = await self._resolve_profile_id(wallet)
        if not profile_id:
            logger.warning(
                f"[NOTIFY] Could not resolve profile for {event_type} wallet={wallet[:8]} "
                f"round={event.round_id}, skipping"
            )
            return False

        properties = [
            {"key": "eventType", "value": event_type},
            {"key": "round", "value": str(event.round_id)},
            {"key": "totalPot", "value": str(event.total_usdc)},
            {"key": "currency", "value": "USDC"},
            {"key": "participants", "value": str(len(event.participant_wallets))},
        ]
        if event_type == "loss":
            properties.append({"key": "winner", "value": event.winner_wallet})

        content_id = f"{profile_id}:{event_type}:{event.round_id}"
        ok = await self._create_content(profile_id, content_id, properties)
        if not ok:
            ok = await self._create_content(profile_id, content_id, properties)

        if ok:
            logger.info(f"[NOTIFY] Published {event_type} round={event.round_id} wallet={wallet[:8]}")
        else:
            logger.warning(f"[NOTIFY] Failed {event_type} round={event.round_id} wallet={wallet[:8]} (after retry)")
        return ok

    async def publish_round_settled(self, event: RoundSettledEvent) -> None:
        try:
            await self._publish(event, event.winner_wallet, "win")
        except Exception as e:
            logger.warning(f"[NOTIFY] Win publish error round={event.round_id}: {e}")

        losers = [w for w in event.participant_wallets if w != event.winner_wallet]
        for i, wallet in enumerate(losers):
            try:
                await self._publish(event, wallet, "loss")
            except Exception as e:
                logger.warning(f"[NOTIFY] Loss publish error round={event.round_id} wallet={wallet[:8]}: {e}")
            if i < len(losers) - 1:
                await asyncio.sleep(self.spacing_sec)

    async def aclose(self) -> None:
        await self._client.aclose()
