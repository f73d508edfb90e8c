from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from functools import lru_cache

import httpx

from leadportal.core.config import get_settings


logger = logging.getLogger("leadportal.notifications")

NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str | None:
    digits = NON_DIGITS.sub("", raw or "")
    return f"+1{digits}" if digits else None


def lead_assigned_message(name: str, phone: str | None, lead_id: str, portal_domain: str | None) -> str:
    lines = ["[Lead Assigned]", "", name, phone or "", ""]
    link = f"{portal_domain.rstrip('/')}/leads/{lead_id}" if portal_domain else f"/leads/{lead_id}"
    lines.append(link)
    return "\n".join(lines)


class OpenPhoneNotifier:
    def __init__(
        self,
        api_url: str,
        *,
        api_key: str | None,
        from_number: str | None,
        user_id: str | None = None,
        extra_numbers: Sequence[str] = (),
        portal_domain: str | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.from_number = from_number
        self.user_id = user_id
        self.extra_numbers = tuple(extra_numbers)
        self.portal_domain = portal_domain
        self._http = http

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=10.0)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def send(self, to: str, content: str) -> None:
        body = {"content": content, "from": self.from_number, "to": [to]}
        if self.user_id:
            body["userId"] = self.user_id
        response = await self.http.post(
            self.api_url,
            json=body,
            headers={"Authorization": self.api_key or "", "Content-Type": "application/json"},
        )
        response.raise_for_status()

    async def notify_lead_assigned(
        self,
        *,
        rep_phone: str | None,
        lead_id: str,
        lead_name: str,
        lead_phone: str | None,
    ) -> list[str]:
        """Text the assigned rep and any configured extra numbers. Never raises."""
        if not self.api_key or not self.from_number:
            logger.info("sms.skipped", extra={"lead_id": lead_id, "reason": "openphone not configured"})
            return []

        recipients = [number for number in (normalize_phone(rep_phone), *self.extra_numbers) if number]
        content = lead_assigned_message(lead_name, lead_phone, lead_id, self.portal_domain)
        delivered = []
        for number in recipients:
            try:
                await self.send(number, content)
            except httpx.HTTPError as exc:
                logger.warning("sms.failed", extra={"lead_id": lead_id, "error": str(exc)})
                continue
            delivered.append(number)
        return delivered


@lru_cache
def _notifier_singleton() -> OpenPhoneNotifier:
    settings = get_settings()
    extra = [number.strip() for number in settings.lead_notification_extra_numbers.split(",") if number.strip()]
    return OpenPhoneNotifier(
        settings.openphone_api_url,
        api_key=settings.openphone_api_key,
        from_number=settings.openphone_from_number,
        user_id=settings.openphone_user_id,
        extra_numbers=extra,
        portal_domain=settings.lead_portal_domain,
    )


def get_notifier() -> OpenPhoneNotifier:
    return _notifier_singleton()
