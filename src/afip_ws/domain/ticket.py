"""
Login ticket request (TRA) builder.

The ticket is valid from ten minutes before until ten minutes after the
moment it is built; the login service adds its own small tolerance. All
timestamps are rendered in the authority's local offset (-03:00) with
second precision.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta, timezone

from lxml import etree

from afip_ws.domain.models import LoginTicketRequest

type Clock = Callable[[], datetime]

TICKET_WINDOW = timedelta(minutes=10)
AUTHORITY_TZ = timezone(timedelta(hours=-3))


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_authority_time(moment: datetime) -> str:
    """
    >>> format_authority_time(datetime(2025, 1, 15, 13, 0, 5, 999, tzinfo=UTC))
    '2025-01-15T10:00:05-03:00'
    """
    return moment.astimezone(AUTHORITY_TZ).isoformat(timespec="seconds")


class UniqueIdSequence:
    """
    uniqueId values: epoch seconds, bumped past the last id issued so two
    logins built in the same second never share one. The wire field is a
    32-bit unsigned int.
    """

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def next_for(self, moment: datetime) -> int:
        with self._lock:
            self._last = max(int(moment.timestamp()), self._last + 1)
            return self._last


_UNIQUE_IDS = UniqueIdSequence()


def build_ticket(
    service_name: str,
    clock: Clock = utc_now,
    unique_ids: UniqueIdSequence | None = None,
) -> LoginTicketRequest:
    now = clock()
    ids = _UNIQUE_IDS if unique_ids is None else unique_ids
    return LoginTicketRequest(
        unique_id=ids.next_for(now),
        generation_time=now - TICKET_WINDOW,
        expiration_time=now + TICKET_WINDOW,
        service_name=service_name,
    )


def render_ticket_xml(ticket: LoginTicketRequest) -> bytes:
    """Serialise the ticket to the UTF-8 document that gets signed."""
    root = etree.Element("loginTicketRequest", version="1.0")
    header = etree.SubElement(root, "header")
    etree.SubElement(header, "uniqueId").text = str(ticket.unique_id)
    etree.SubElement(header, "generationTime").text = format_authority_time(
        ticket.generation_time
    )
    etree.SubElement(header, "expirationTime").text = format_authority_time(
        ticket.expiration_time
    )
    etree.SubElement(root, "service").text = ticket.service_name
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8")
