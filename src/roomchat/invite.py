"""Invite links for sharing a room identifier out of band."""

import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from .types import INVITE_TTL


@dataclass(frozen=True)
class RoomInvite:
    """A shareable room invitation.

    Attributes:
        room_id: The room identifier (the shared secret).
        expires_at: Expiry as Unix time in milliseconds.
        host_id: Participant id of the inviting host.
    """

    room_id: str
    expires_at: int
    host_id: str = ""

    def is_expired(self, now_ms: Optional[int] = None) -> bool:
        """Whether the invite has expired."""
        if now_ms is None:
            now_ms = _now_ms()
        return self.expires_at <= now_ms


def _now_ms() -> int:
    return int(time.time() * 1000)


def create_invite_url(
    base_url: str,
    room_id: str,
    host_id: str = "",
    ttl: float = INVITE_TTL,
    now_ms: Optional[int] = None,
) -> str:
    """Create an invite URL for a room.

    Format: <base_url>?room=<room_id>&expires=<unix-ms>&host=<host_id>

    Any existing query string on ``base_url`` is replaced.

    Args:
        base_url: Page URL the invite points at.
        room_id: The room identifier.
        host_id: The inviting host's participant id.
        ttl: Lifetime in seconds (default: 24 hours).
        now_ms: Current time override in milliseconds.

    Returns:
        The invite URL string.
    """
    if now_ms is None:
        now_ms = _now_ms()
    expires = now_ms + int(ttl * 1000)

    parsed = urlparse(base_url)
    query = urlencode({"room": room_id, "expires": expires, "host": host_id})
    return urlunparse(parsed._replace(query=query, fragment=""))


def parse_invite_url(url: str, now_ms: Optional[int] = None) -> Optional[RoomInvite]:
    """Parse an invite URL.

    A missing or unreadable expiry defaults to 24 hours from now.

    Args:
        url: The invite URL.
        now_ms: Current time override in milliseconds.

    Returns:
        RoomInvite, or None if the URL carries no room or has expired.
    """
    if now_ms is None:
        now_ms = _now_ms()

    params = parse_qs(urlparse(url).query)

    room = params.get("room", [""])[0]
    if not room:
        return None

    try:
        expires_at = int(params["expires"][0])
    except (KeyError, ValueError):
        expires_at = now_ms + INVITE_TTL * 1000

    invite = RoomInvite(
        room_id=room,
        expires_at=expires_at,
        host_id=params.get("host", [""])[0],
    )

    if invite.is_expired(now_ms):
        return None

    return invite
