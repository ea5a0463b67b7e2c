"""
Unit tests for JinjaTemplateRenderer.

Covers subject extraction, escaping, SMS whitespace handling and the errors
raised for missing or broken templates.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from school_common.events.notification_events import NotificationChannel
from school_service_libs.error_handling import RelayError

from services.notification_service.implementations.template_renderer_impl import (
    JinjaTemplateRenderer,
)


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    (tmp_path / "email").mkdir()
    (tmp_path / "sms").mkdir()
    (tmp_path / "email" / "notice.html.j2").write_text(
        "<!-- subject: Duyuru - {{ title }} -->\n<p>{{ body }}</p>\n", encoding="utf-8"
    )
    (tmp_path / "email" / "no-subject.html.j2").write_text("<p>Merhaba</p>", encoding="utf-8")
    (tmp_path / "email" / "broken.html.j2").write_text("<p>{{ unclosed </p>", encoding="utf-8")
    (tmp_path / "sms" / "notice.txt.j2").write_text(
        "{{ title }}:\n   {{ body }}\n\n", encoding="utf-8"
    )
    return tmp_path


@pytest.fixture
def renderer(template_dir: Path) -> JinjaTemplateRenderer:
    return JinjaTemplateRenderer(template_path=str(template_dir))


class TestEmailTemplates:
    @pytest.mark.asyncio
    async def test_subject_is_extracted_and_removed_from_body(
        self, renderer: JinjaTemplateRenderer
    ) -> None:
        rendered = await renderer.render(
            "notice", NotificationChannel.EMAIL, {"title": "Veli Toplantısı", "body": "Cuma 14:00"}
        )

        assert rendered.subject == "Duyuru - Veli Toplantısı"
        assert rendered.content.startswith("<p>Cuma 14:00</p>")

    @pytest.mark.asyncio
    async def test_html_variables_are_escaped(self, renderer: JinjaTemplateRenderer) -> None:
        rendered = await renderer.render(
            "notice", NotificationChannel.EMAIL, {"title": "Ali & Veli", "body": "<script>"}
        )

        assert "&lt;script&gt;" in rendered.content
        assert rendered.subject == "Duyuru - Ali & Veli"

    @pytest.mark.asyncio
    async def test_missing_subject_comment_returns_none(
        self, renderer: JinjaTemplateRenderer
    ) -> None:
        rendered = await renderer.render("no-subject", NotificationChannel.EMAIL, {})

        assert rendered.subject is None
        assert rendered.content == "<p>Merhaba</p>"


class TestSmsTemplates:
    @pytest.mark.asyncio
    async def test_whitespace_is_collapsed_and_not_escaped(
        self, renderer: JinjaTemplateRenderer
    ) -> None:
        rendered = await renderer.render(
            "notice", NotificationChannel.SMS, {"title": "Ödeme", "body": "A & B"}
        )

        assert rendered.content == "Ödeme: A & B"
        assert rendered.subject is None


class TestErrors:
    @pytest.mark.asyncio
    async def test_missing_template_raises_validation_error(
        self, renderer: JinjaTemplateRenderer
    ) -> None:
        with pytest.raises(RelayError) as exc_info:
            await renderer.render("no-subject", NotificationChannel.SMS, {})

        assert exc_info.value.error_code == "VALIDATION_ERROR"
        assert "no-subject (SMS)" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_syntax_error_raises_validation_error(
        self, renderer: JinjaTemplateRenderer
    ) -> None:
        with pytest.raises(RelayError, match="Template rendering failed"):
            await renderer.render("broken", NotificationChannel.EMAIL, {})

    @pytest.mark.asyncio
    async def test_template_exists_is_channel_specific(
        self, renderer: JinjaTemplateRenderer
    ) -> None:
        assert await renderer.template_exists("notice", NotificationChannel.EMAIL) is True
        assert await renderer.template_exists("no-subject", NotificationChannel.EMAIL) is True
        assert await renderer.template_exists("no-subject", NotificationChannel.SMS) is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "template_name, channel",
    [
        ("welcome", NotificationChannel.EMAIL),
        ("exam-invitation", NotificationChannel.EMAIL),
        ("exam-results", NotificationChannel.EMAIL),
        ("payment-confirmation", NotificationChannel.SMS),
        ("payment-reminder", NotificationChannel.SMS),
        ("exam-reminder", NotificationChannel.SMS),
    ],
)
async def test_bundled_templates_exist(template_name: str, channel: NotificationChannel) -> None:
    assert await JinjaTemplateRenderer().template_exists(template_name, channel)
