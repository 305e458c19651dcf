"""Template rendering for email notifications using Jinja2."""

import logging
from typing import Any, Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from .models import NotificationTemplateError

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders subject, HTML and text bodies from the email_templates package.

    One template set covers every notification type; templates branch on
    ``type`` in their context. Templates are cached by Jinja2 after first load.
    """

    def __init__(
        self,
        template_dir: str = "email_templates",
        subject_template: str = "subject.j2",
        html_template: str = "body.html.j2",
        text_template: str = "body.txt.j2",
    ):
        self.subject_template_name = subject_template
        self.html_template_name = html_template
        self.text_template_name = text_template

        self.env = Environment(
            loader=PackageLoader("coralqueue.notifications", template_dir),
            autoescape=True,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, context: Dict[str, Any]) -> Dict[str, str]:
        """Render all email templates with the provided context.

        Returns:
            Dictionary with ``subject`` (single line), ``html_body`` and ``text_body``

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        try:
            subject = (
                self.env.get_template(self.subject_template_name)
                .render(context)
                .strip()
                .replace("\n", " ")
            )
            html_body = self.env.get_template(self.html_template_name).render(context)
            text_body = self.env.get_template(self.text_template_name).render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed for {context.get('type', 'unknown')}: {e}"
            logger.error(error_msg)
            raise NotificationTemplateError(error_msg) from e

        return {
            "subject": subject,
            "html_body": html_body,
            "text_body": text_body,
        }
