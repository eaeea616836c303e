# backend/inkflow/services/template_service.py
"""
Template rendering for transactional emails.

Jinja2 environment rooted at ``inkflow/templates`` with autoescaping on, so
client-supplied text can never inject markup into an email body.
"""

from datetime import datetime
from decimal import Decimal
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from ..core.config import settings
from ..core.constants import BRAND_NAME

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


def currency(value: Union[Decimal, float, int, None]) -> str:
    """Format an amount in euros, French style: ``1 234,50 €``."""
    amount = Decimal(str(value or 0)).quantize(Decimal("0.01"))
    whole, _, cents = f"{amount:,.2f}".partition(".")
    return f"{whole.replace(',', ' ')},{cents} €"


def format_date(value: Union[datetime, str], format_str: str = "%d/%m/%Y") -> str:
    if isinstance(value, str):
        return value
    return value.strftime(format_str)


def format_time(value: Union[datetime, str], format_str: str = "%H:%M") -> str:
    if isinstance(value, str):
        return value
    return value.strftime(format_str)


class TemplateService:
    """Centralized template rendering service using Jinja2."""

    def __init__(self, template_dir: Optional[Path] = None):
        directory = template_dir or TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(directory)),
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["currency"] = currency
        self.env.filters["format_date"] = format_date
        self.env.filters["format_time"] = format_time

    def get_common_context(self) -> Dict[str, Any]:
        """Common context variables used across all templates."""
        return {
            "brand_name": BRAND_NAME,
            "current_year": datetime.now().year,
            "frontend_url": settings.frontend_url,
            "support_email": settings.email_reply_to or settings.from_email,
        }

    def render_template(
        self, template_name: str, context: Optional[Dict[str, Any]] = None, **kwargs: Any
    ) -> str:
        """
        Render a template with the given context.

        Raises:
            TemplateNotFound: If template doesn't exist
        """
        try:
            template = self.env.get_template(template_name)
        except TemplateNotFound:
            logger.error(f"Template not found: {template_name}")
            raise
        full_context = self.get_common_context()
        if context:
            full_context.update(context)
        full_context.update(kwargs)
        return template.render(full_context)

    def template_exists(self, template_name: str) -> bool:
        try:
            self.env.get_template(template_name)
            return True
        except TemplateNotFound:
            return False
