# outreach/services/template_renderer.py
"""
Template Renderer - `{{variable}}` substitution, SMS size/cost math and
the HTML email layout.
"""
import html
import logging
import math
import re
import unicodedata
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from outreach.core.config import EngineConfig
from outreach.core.values import stringify

log = logging.getLogger("outreach.template_renderer")

VARIABLE_PATTERN = re.compile(r"\{\{([a-zA-Z0-9_]+)\}\}")

EMAIL_LAYOUT = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin: 0; padding: 0; font-family: Arial, Helvetica, sans-serif; background-color: #f3f4f6;">
    <div style="max-width: 600px; margin: 0 auto; padding: 30px; background-color: #ffffff;">
        <h1 style="margin: 0 0 20px; font-size: 22px;">{sender}</h1>
        <div style="color: #4B5563; font-size: 15px; line-height: 1.6;">{body}</div>
    </div>
</body>
</html>
"""


class TemplateRenderer:

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    # ────────────────────────────────────────────
    # Rendering
    # ────────────────────────────────────────────

    def render(self, template: Optional[str], variables: Mapping[str, Any]) -> str:
        """
        Replace every {{key}} with the stringified attribute value.
        Lists and objects are JSON encoded; unknown keys stay verbatim.
        """
        if not template:
            return ""

        def substitute(match: re.Match) -> str:
            key = match.group(1)
            if key not in variables:
                return match.group(0)
            return stringify(variables[key])

        return VARIABLE_PATTERN.sub(substitute, template)

    def extract_variables(self, template: Optional[str]) -> List[str]:
        """Variable names used by a template, in first-use order"""
        if not template:
            return []
        return list(dict.fromkeys(VARIABLE_PATTERN.findall(template)))

    def validate(self, template: Optional[str], available_keys: Iterable[str]) -> List[str]:
        """Variables referenced by the template that are not available"""
        available = set(available_keys)
        return [name for name in self.extract_variables(template) if name not in available]

    # ────────────────────────────────────────────
    # SMS helpers
    # ────────────────────────────────────────────

    def sanitize(self, message: Optional[str], max_length: Optional[int] = None) -> str:
        """Strip control characters (newlines survive) and truncate"""
        if not message:
            return ""
        limit = max_length or self.config.sms_max_length
        cleaned = "".join(
            ch for ch in message
            if ch == "\n" or unicodedata.category(ch) != "Cc"
        )
        return cleaned[:limit]

    @staticmethod
    def requires_unicode(message: str) -> bool:
        return any(ord(ch) > 127 for ch in message)

    def calculate_segments(self, message: Optional[str]) -> int:
        if not message:
            return 0

        length = len(message)
        if self.requires_unicode(message):
            first, concat = self.config.sms_unicode_segment_size, self.config.sms_unicode_segment_size_concat
        else:
            first, concat = self.config.sms_segment_size, self.config.sms_segment_size_concat

        if length <= first:
            return 1
        return math.ceil(length / concat)

    def sms_cost(self, message: str) -> Decimal:
        return self.calculate_segments(message) * self.config.sms_cost_per_segment

    def estimate_cost(self, template: Optional[str], count: int, price_per_segment: Optional[Decimal] = None) -> Dict[str, Any]:
        """Rough campaign cost from the raw template length"""
        price = self.config.sms_cost_per_segment if price_per_segment is None else Decimal(str(price_per_segment))
        segments = self.calculate_segments(template)
        return {
            "segments": segments,
            "total_sms": count * segments,
            "estimated_cost": (count * segments * price).quantize(Decimal("0.01")),
        }

    # ────────────────────────────────────────────
    # Email helpers
    # ────────────────────────────────────────────

    def to_html_email(self, body: Optional[str], display_name: Optional[str] = None) -> str:
        """
        Wrap a rendered plain-text body in the HTML email layout.

        The body is HTML-escaped (attribute values included) and line
        breaks become <br>, so recipients see the text as written.
        """
        text = (body or "").replace("\r\n", "\n")
        html_body = html.escape(text, quote=True).replace("\n", "<br>\n")
        return EMAIL_LAYOUT.format(
            sender=html.escape(display_name or "", quote=True),
            body=html_body,
        )
