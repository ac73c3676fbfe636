"""hCaptcha verification for anonymous uploads."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from alias_decks.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    success: bool
    error: Optional[str] = None


class CaptchaVerifier:
    """Verifies tokens against the siteverify endpoint; no secret means disabled."""

    def __init__(
        self,
        secret: Optional[str],
        verify_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret = secret or None
        self.verify_url = verify_url
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.secret is not None

    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> VerificationResult:
        if not self.enabled:
            return VerificationResult(success=True)

        if not token:
            return VerificationResult(success=False, error="missing-token")

        form = {"secret": self.secret, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.verify_url, data=form)
        except httpx.HTTPError as e:
            logger.warning(f"Captcha verification request failed: {e}")
            return VerificationResult(success=False, error="verification-failed")

        if response.status_code >= 400:
            logger.warning(f"Captcha verification returned status {response.status_code}")
            return VerificationResult(success=False, error="verification-failed")

        try:
            payload = response.json()
        except ValueError:
            return VerificationResult(success=False, error="verification-failed")

        if not payload.get("success"):
            codes = payload.get("error-codes") or []
            return VerificationResult(success=False, error=codes[0] if codes else "verification-failed")

        return VerificationResult(success=True)


def get_captcha_verifier() -> CaptchaVerifier:
    """Dependency building a verifier from current settings."""
    settings = get_settings()
    return CaptchaVerifier(
        secret=settings.captcha_secret,
        verify_url=settings.captcha_verify_url,
        timeout=settings.captcha_timeout_seconds,
    )
