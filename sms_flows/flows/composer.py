# sms_flows/flows/composer.py
"""
Render a flow message for one subscriber.

Everything here is a pure function of its inputs so it can be tested without a
database or a transport.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Optional

from sms_flows.conf import DEFAULT_LINK_TAG, LINK_BASE_URL
from sms_flows.db.models import FlowMessage, FlowStatus

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_LINK_TRAILING_PUNCTUATION = ".,!?)"


def render_placeholders(template: str, context: Optional[Dict[str, Any]]) -> str:
    """Replace ``{name}`` with ``context[name]``; unknown placeholders are kept verbatim."""
    if not context:
        return template

    def _replace(match: re.Match) -> str:
        value = context.get(match.group(1))
        if value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


def _link_pattern(link_base: str) -> re.Pattern:
    return re.compile(re.escape(link_base.rstrip("/")) + r"[^\s]*")


def _tracked_link(link_base: str, tag: str, coupon_code: Optional[str] = None) -> str:
    link = f"{link_base}?utm={tag}"
    if coupon_code:
        link += f"&coupon={coupon_code}"
    return link


def append_coupon(text: str, coupon_code: str, tag: str, link_base: str = LINK_BASE_URL) -> str:
    """
    Attach ``coupon_code`` to the first link pointing at ``link_base``.

    If the text has no such link, a fresh tracked link carrying the coupon is
    appended on a new line.
    """
    match = _link_pattern(link_base).search(text)
    if match is None:
        return f"{text}\n{_tracked_link(link_base, tag, coupon_code)}"

    # Sentence punctuation after the link is not part of it
    link = match.group(0).rstrip(_LINK_TRAILING_PUNCTUATION)
    end = match.start() + len(link)
    separator = "&" if "?" in link else "?"
    return f"{text[:end]}{separator}coupon={coupon_code}{text[end:]}"


def compose_message(message: FlowMessage, status: FlowStatus, link_base: str = LINK_BASE_URL) -> str:
    """Final SMS text for ``message`` sent to the subscriber tracked by ``status``."""
    text = render_placeholders(message.message_text, status.context)
    tag = message.link_utm or DEFAULT_LINK_TAG

    if message.include_coupon and status.coupon_code:
        return append_coupon(text, status.coupon_code, tag, link_base)

    # No coupon to attach: still make sure a link-bearing step carries a tracked link
    if message.include_link and _link_pattern(link_base).search(text) is None:
        return f"{text}\n{_tracked_link(link_base, tag)}"

    return text
