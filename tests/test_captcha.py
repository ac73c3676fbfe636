"""Tests for hCaptcha verification."""

from urllib.parse import parse_qs

import httpx
import pytest

from alias_decks.services.captcha import CaptchaVerifier

VERIFY_URL = "https://hcaptcha.test/siteverify"


def verifier(handler, secret="secret") -> CaptchaVerifier:
    return CaptchaVerifier(secret, VERIFY_URL, timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_disabled_without_secret():
    captcha = CaptchaVerifier(None, VERIFY_URL)
    assert not captcha.enabled
    assert (await captcha.verify(None)).success


@pytest.mark.asyncio
async def test_missing_token():
    captcha = verifier(lambda request: httpx.Response(200, json={"success": True}))
    result = await captcha.verify("")
    assert not result.success
    assert result.error == "missing-token"


@pytest.mark.asyncio
async def test_success_posts_form_with_remote_ip():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        return httpx.Response(200, json={"success": True})

    result = await verifier(handler).verify("token-123", "9.9.9.9")

    assert result.success
    assert seen == {"secret": "secret", "response": "token-123", "remoteip": "9.9.9.9"}


@pytest.mark.asyncio
async def test_rejected_token_reports_first_error_code():
    captcha = verifier(
        lambda request: httpx.Response(
            200, json={"success": False, "error-codes": ["invalid-input-response", "other"]}
        )
    )
    result = await captcha.verify("bad")
    assert not result.success
    assert result.error == "invalid-input-response"


@pytest.mark.asyncio
async def test_upstream_failures_fail_closed():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    assert not (await verifier(refuse).verify("token")).success
    assert not (await verifier(lambda r: httpx.Response(502)).verify("token")).success
    assert not (await verifier(lambda r: httpx.Response(200, text="nope")).verify("token")).success
