"""Transactional email through the EmailJS REST API.

Two templates are used: one confirming a newly filed complaint and one
telling the student it has been resolved.  Sends are best-effort: the
caller logs a failure and carries on.
"""

from __future__ import annotations

from typing import Final

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

EMAILJS_SEND_URL: Final[str] = "https://api.emailjs.com/api/v1.0/email/send"


class EmailError(Exception):
    """EmailJS rejected the request or could not be reached."""


class _RetryableEmailError(EmailError):
    pass


class EmailService:
    """Thin async EmailJS client.

    When no service id / public key is configured every send is a logged
    no-op, so development setups need no credentials.
    """

    __slots__ = ("_client", "_private_key", "_public_key", "_service_id", "_templates")

    def __init__(
        self,
        *,
        service_id: str,
        public_key: str,
        template_new: str,
        template_resolved: str,
        private_key: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._service_id = service_id
        self._public_key = public_key
        self._private_key = private_key
        self._templates = {"new": template_new, "resolved": template_resolved}
        self._client = client or httpx.AsyncClient(timeout=10.0)

    @property
    def enabled(self) -> bool:
        return bool(self._service_id and self._public_key)

    async def send_new_complaint(
        self,
        *,
        to_email: str,
        to_name: str,
        complaint_id: str,
        complaint_title: str,
    ) -> bool:
        return await self._send(
            "new",
            {
                "to_name": to_name or "Student",
                "complaint_title": complaint_title or "Complaint",
                "complaint_id": complaint_id,
                "user_email": to_email,
            },
        )

    async def send_resolved(
        self,
        *,
        to_email: str,
        to_name: str,
        complaint_id: str,
        complaint_title: str,
    ) -> bool:
        return await self._send(
            "resolved",
            {
                "to_name": to_name or "Student",
                "complaint_title": complaint_title or "Complaint",
                "complaint_id": complaint_id,
                "user_email": to_email,
            },
        )

    async def _send(self, template: str, params: dict[str, str]) -> bool:
        template_id = self._templates[template]
        if not self.enabled or not template_id:
            logger.debug("email.disabled_skip", template=template, complaint_id=params.get("complaint_id"))
            return False
        if not params.get("user_email"):
            logger.info("email.no_recipient", template=template, complaint_id=params.get("complaint_id"))
            return False

        payload: dict[str, object] = {
            "service_id": self._service_id,
            "template_id": template_id,
            "user_id": self._public_key,
            "template_params": params,
        }
        if self._private_key:
            payload["accessToken"] = self._private_key

        await self._post(payload)
        logger.info("email.sent", template=template, complaint_id=params.get("complaint_id"))
        return True

    @retry(
        retry=retry_if_exception_type(_RetryableEmailError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _post(self, payload: dict[str, object]) -> None:
        try:
            response = await self._client.post(EMAILJS_SEND_URL, json=payload)
        except httpx.TransportError as exc:
            raise _RetryableEmailError(f"EmailJS unreachable: {exc}") from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise _RetryableEmailError(f"EmailJS returned {response.status_code}")
        if response.status_code >= 400:
            raise EmailError(f"EmailJS rejected request ({response.status_code}): {response.text[:200]}")

    async def close(self) -> None:
        await self._client.aclose()
