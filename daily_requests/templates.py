"""Request template rendering.

A request template is raw HTTP-like text::

    POST /session HTTP/1.1
    Host: example.com
    Content-Type: application/x-www-form-urlencoded

    event_token={event_token}&time_spent={time_spent}

Placeholders of the form ``{name}`` are substituted with values of the due
item. When the header block has no ``Content-Length`` line, one is inserted
with the UTF-8 byte length of the body. The event variant of a payload is the
session variant with its ``POST /session`` marker rewritten to ``POST /event``.
"""

import re
from enum import Enum
from typing import Optional

from .models import Account, DueItem, MilestoneKind, RenderedRequest, RequestType

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

TOKEN_SUFFIX_MARKER = "_day"
NO_EVENT_LEVEL_NAME = "-"

SESSION_MARKER = "POST /session"
EVENT_MARKER = "POST /event"

CONTENT_LENGTH_HEADER = "Content-Length"

LEGACY_PAYLOAD_TEMPLATE = (
    "POST /session HTTP/1.1\n"
    "Host: {host}\n"
    "Content-Type: application/x-www-form-urlencoded\n"
    "\n"
    "environment=production"
    "&event_token={event_token}"
    "&time_spent={time_spent}"
    "&account_name={account_name}"
    "&game_id={game_id}"
    "&level_name={level_name}"
    "&days_offset={days_offset}"
)


class RenderMode(str, Enum):
    """Source of the payload text."""
    TEMPLATE = "template"  # the account's request template
    LEGACY = "legacy"      # fixed built-in payload


def sanitize_event_token(token: str) -> str:
    """Strip everything from the first `_day` onwards."""
    return token.split(TOKEN_SUFFIX_MARKER, 1)[0]


def substitute_placeholders(text: str, values: dict[str, str]) -> str:
    """Replace recognized `{name}` placeholders in a single pass.

    Unrecognized placeholders are kept verbatim, and substituted values are
    not scanned again.
    """
    def _replace(match: re.Match) -> str:
        return values.get(match.group(1), match.group(0))

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def _find_separator(text: str) -> tuple[int, str]:
    """Locate the first blank line. Returns (index, line ending) or (-1, "")."""
    candidates = [
        (text.find(eol * 2), eol)
        for eol in ("\r\n", "\n")
    ]
    found = [(index, eol) for index, eol in candidates if index >= 0]
    if not found:
        return -1, ""
    return min(found)


def has_content_length(header_block: str) -> bool:
    """Header names are matched case-insensitively, as HTTP treats them."""
    prefix = f"{CONTENT_LENGTH_HEADER.lower()}:"
    return any(
        line.strip().lower().startswith(prefix)
        for line in header_block.splitlines()
    )


def repair_content_length(text: str) -> str:
    """Insert a Content-Length header when the header block lacks one.

    Text without a blank-line separator, with an empty header block, or
    already carrying the header is returned unchanged.
    """
    index, eol = _find_separator(text)
    if index <= 0:
        return text

    header_block = text[:index]
    if has_content_length(header_block):
        return text

    body = text[index + 2 * len(eol):]
    length = len(body.encode("utf-8"))
    return f"{header_block}{eol}{CONTENT_LENGTH_HEADER}: {length}{eol}{eol}{body}"


def to_event_variant(content: str) -> str:
    """Rewrite the session marker on the request line to the event marker.

    Only the first line is touched, so the body and its length stay as rendered.
    """
    request_line, sep, rest = content.partition("\n")
    return request_line.replace(SESSION_MARKER, EVENT_MARKER, 1) + sep + rest


def wants_event_variant(item: DueItem) -> bool:
    """Purchase events always get an event variant; levels unless named `-`."""
    if item.kind == MilestoneKind.PURCHASE_EVENT:
        return True
    return item.level_name != NO_EVENT_LEVEL_NAME


def placeholder_values(
    item: DueItem,
    time_spent: int,
    account: Account,
) -> dict[str, str]:
    token = sanitize_event_token(item.event_token)
    if item.kind == MilestoneKind.LEVEL and item.level_name is not None:
        level_name = item.level_name
    else:
        level_name = token

    return {
        "event_token": token,
        "time_spent": str(time_spent),
        "account_name": account.name,
        "game_id": str(account.game_id),
        "level_name": level_name,
        "days_offset": str(item.days_offset),
    }


class TemplateRenderer:
    """Renders due items into session/event request records."""

    def __init__(
        self,
        mode: RenderMode = RenderMode.TEMPLATE,
        legacy_host: str = "localhost",
    ):
        self.mode = RenderMode(mode)
        self.legacy_host = legacy_host

    def template_for(self, account: Account) -> str:
        if self.mode == RenderMode.LEGACY:
            return LEGACY_PAYLOAD_TEMPLATE.replace("{host}", self.legacy_host)
        return account.request_template

    def render_content(
        self,
        template: str,
        item: DueItem,
        time_spent: int,
        account: Account,
    ) -> str:
        """Substitute placeholders and repair the length header."""
        values = placeholder_values(item, time_spent, account)
        return repair_content_length(substitute_placeholders(template, values))

    def render(
        self,
        item: DueItem,
        time_spent: int,
        account: Account,
        target_date: str,
        template: Optional[str] = None,
    ) -> list[RenderedRequest]:
        """Render one due item into one or two request records."""
        if template is None:
            template = self.template_for(account)

        session_content = self.render_content(template, item, time_spent, account)
        token = sanitize_event_token(item.event_token)

        rendered = [
            RenderedRequest(
                request_type=RequestType.SESSION,
                content=session_content,
                event_token=token,
                level_id=item.level_id,
                time_spent=time_spent,
                timestamp=target_date,
            )
        ]

        if wants_event_variant(item):
            rendered.append(
                RenderedRequest(
                    request_type=RequestType.EVENT,
                    content=to_event_variant(session_content),
                    event_token=token,
                    level_id=item.level_id,
                    time_spent=time_spent,
                    timestamp=target_date,
                )
            )

        return rendered
