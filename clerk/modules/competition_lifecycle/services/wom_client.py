# clerk/modules/competition_lifecycle/services/wom_client.py

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
import httpx
from clerk.core.utils import retry_on_transient_error

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.wiseoldman.net/v2"
DEFAULT_COMPETITION_URL = "https://wiseoldman.net/competitions/"


class WiseOldManError(Exception):
    def __init__(self, status_code: Optional[int], message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Wise Old Man API error ({status_code}): {message}")


class WiseOldManServerError(WiseOldManError):
    """5xx and rate-limit responses; worth retrying."""


@dataclass
class CreatedCompetition:
    competition_id: int
    title: str
    verification_code: str


def competition_url(competition_id: int) -> str:
    base = os.getenv('WISE_OLD_MAN_COMPETITION_URL', DEFAULT_COMPETITION_URL)
    return f"{base}{competition_id}"


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class WiseOldManClient:
    """Thin async client for the Wise Old Man competitions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 2.0,
    ):
        api_key = api_key or os.getenv('WISE_OLD_MAN_API_KEY')
        if not api_key:
            logger.warning("WISE_OLD_MAN_API_KEY is not set; requests are sent without an API key.")
        if timeout is None:
            try:
                timeout = float(os.getenv('WISE_OLD_MAN_TIMEOUT_SECONDS', '15'))
            except (ValueError, TypeError):
                timeout = 15.0

        headers = {"User-Agent": user_agent or os.getenv('WISE_OLD_MAN_USER_AGENT', 'clerk-bot')}
        if api_key:
            headers["x-api-key"] = api_key

        self.retry_delay = retry_delay
        self.client = httpx.AsyncClient(
            base_url=base_url or os.getenv('WISE_OLD_MAN_BASE_URL', DEFAULT_BASE_URL),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        async def send():
            response = await self.client.request(method, path, json=payload)
            if response.status_code >= 500 or response.status_code == 429:
                raise WiseOldManServerError(response.status_code, response.text[:500])
            if response.status_code >= 400:
                try:
                    message = response.json().get('message', response.text)
                except ValueError:
                    message = response.text
                raise WiseOldManError(response.status_code, message)
            return response.json() if response.content else None

        return await retry_on_transient_error(
            send,
            f"Wise Old Man {method} {path}",
            retry_on=(httpx.TransportError, WiseOldManServerError),
            initial_delay=self.retry_delay,
        )

    async def create_competition(
        self,
        title: str,
        metric: str,
        starts_at: datetime,
        ends_at: datetime,
        participants: Optional[list[str]] = None,
    ) -> CreatedCompetition:
        payload = {
            "title": title,
            "metric": metric,
            "startsAt": _iso(starts_at),
            "endsAt": _iso(ends_at),
            "participants": participants or [],
        }
        data = await self._request("POST", "/competitions", payload)
        created = CreatedCompetition(
            competition_id=data["competition"]["id"],
            title=data["competition"]["title"],
            verification_code=data["verificationCode"],
        )
        logger.info(
            "Created Wise Old Man competition",
            extra={'competition_id': created.competition_id, 'title': created.title, 'metric': metric}
        )
        return created

    async def edit_competition(self, competition_id: int, fields: dict, verification_code: str) -> dict:
        payload = dict(fields)
        for key in ("startsAt", "endsAt"):
            if isinstance(payload.get(key), datetime):
                payload[key] = _iso(payload[key])
        payload["verificationCode"] = verification_code
        data = await self._request("PUT", f"/competitions/{competition_id}", payload)
        logger.info("Edited Wise Old Man competition", extra={'competition_id': competition_id, 'fields': sorted(fields)})
        return data

    async def get_competition_details(self, competition_id: int) -> dict:
        return await self._request("GET", f"/competitions/{competition_id}")

    async def add_participants(self, competition_id: int, participants: list[str], verification_code: str) -> dict:
        payload = {"verificationCode": verification_code, "participants": participants}
        return await self._request("POST", f"/competitions/{competition_id}/participants", payload)
