from unittest.mock import patch

import pytest

from sharesub.services.email_service import EmailSender


def test_verify_email_template_renders_link(settings):
    sender = EmailSender(settings)

    html = sender.render("verify_email.html", first_name="Ada", token="tok123", returning=False, expires_minutes=15)

    assert "Ada" in html
    assert "tok123" in html
    assert settings.app_url in html


def test_reset_template_renders(settings):
    sender = EmailSender(settings)

    html = sender.render("reset_password.html", first_name="Ada", username="ada", token="tok456", expires_minutes=15)

    assert "tok456" in html


@pytest.mark.asyncio
async def test_send_without_api_key_is_skipped(settings):
    sender = EmailSender(settings)

    sent = await sender.send("ada@example.com", "Hi", "verify_email.html", first_name="Ada", token="t")

    assert sent is False


@pytest.mark.asyncio
async def test_send_posts_rendered_html_to_resend(settings):
    sender = EmailSender(settings.model_copy(update={"resend_api_key": "re_test"}))

    with patch("sharesub.services.email_service.resend.Emails.send") as send:
        sent = await sender.send("ada@example.com", "Verify", "verify_email.html", first_name="Ada", token="tok789")

    assert sent is True
    payload = send.call_args.args[0]
    assert payload["from"] == settings.email_from
    assert payload["to"] == ["ada@example.com"]
    assert payload["subject"] == "Verify"
    assert "tok789" in payload["html"]


@pytest.mark.asyncio
async def test_send_reports_resend_failure(settings):
    sender = EmailSender(settings.model_copy(update={"resend_api_key": "re_test"}))

    with patch("sharesub.services.email_service.resend.Emails.send", side_effect=RuntimeError("boom")):
        sent = await sender.send("ada@example.com", "Verify", "verify_email.html", first_name="Ada", token="t")

    assert sent is False
