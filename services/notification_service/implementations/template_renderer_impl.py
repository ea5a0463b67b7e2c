"""Jinja2 template renderer for Notification Service.

E-mail templates live under ``email/<name>.html.j2`` and carry their subject
in an HTML comment; SMS templates live under ``sms/<name>.txt.j2``.
"""

from __future__ import annotations

import html
import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound, select_autoescape
from school_common.events.notification_events import NotificationChannel
from school_service_libs.error_handling import raise_validation_error
from school_service_libs.logging_utils import create_service_logger

from services.notification_service.protocols import RenderedNotification, TemplateRendererProtocol

logger = create_service_logger("notification_service.template_renderer")

_SUBJECT_PATTERN = re.compile(r"<!--\s*subject:\s*(.+?)\s*-->", re.IGNORECASE)


def _format_date(value: Any, fmt: str = "%d.%m.%Y") -> str:
    return value.strftime(fmt) if hasattr(value, "strftime") else str(value)


def _format_amount(value: Any) -> str:
    try:
        return f"{float(value):,.2f} TL"
    except (TypeError, ValueError):
        return str(value)


class JinjaTemplateRenderer(TemplateRendererProtocol):
    """Jinja2-based renderer for SMS and e-mail notification templates."""

    def __init__(self, template_path: str = "templates") -> None:
        """Initialize the renderer.

        Args:
            template_path: Template directory, absolute or relative to the service root
        """
        path = Path(template_path)
        self.template_dir = path if path.is_absolute() else Path(__file__).parent.parent / path

        logger.info(f"Initializing Jinja2 renderer with template directory: {self.template_dir}")

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml", "html.j2"]),
            enable_async=True,
            keep_trailing_newline=False,
        )
        self.env.filters["date"] = _format_date
        self.env.filters["amount"] = _format_amount

    @staticmethod
    def _filename(template_name: str, channel: NotificationChannel) -> str:
        if channel == NotificationChannel.EMAIL:
            return f"email/{template_name}.html.j2"
        return f"sms/{template_name}.txt.j2"

    async def render(
        self,
        template_name: str,
        channel: NotificationChannel,
        variables: dict[str, Any],
    ) -> RenderedNotification:
        filename = self._filename(template_name, channel)
        logger.debug(f"Rendering template: {filename} with variables: {list(variables)}")

        try:
            template = self.env.get_template(filename)
            content = await template.render_async(**variables)
        except TemplateNotFound:
            logger.error(f"Template not found: {filename}")
            raise_validation_error(
                service="notification-service",
                operation="render_template",
                field="template_name",
                message=f"Template not found: {template_name} ({channel.value})",
            )
        except TemplateError as e:
            logger.error(f"Error rendering template {filename}: {e}", exc_info=True)
            raise_validation_error(
                service="notification-service",
                operation="render_template",
                field="template_rendering",
                message=f"Template rendering failed: {e}",
            )

        if channel == NotificationChannel.SMS:
            return RenderedNotification(content=" ".join(content.split()))

        match = _SUBJECT_PATTERN.search(content)
        # Autoescaping also applies inside the subject comment
        subject = html.unescape(match.group(1).strip()) if match else None
        if subject:
            content = _SUBJECT_PATTERN.sub("", content, count=1).lstrip()
        return RenderedNotification(content=content, subject=subject)

    async def template_exists(self, template_name: str, channel: NotificationChannel) -> bool:
        return (self.template_dir / self._filename(template_name, channel)).exists()
