"""
Anonymous caller identification.

A caller is known by two keys:
    - network address: first X-Forwarded-For hop, else X-Real-IP, else "unknown"
    - anonymous user id: a UUID kept in a long-lived cookie, minted on first
      visit

There is no authentication; the user id only scopes rate limits and quotas.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

UNKNOWN_ADDRESS = "unknown"


@dataclass(frozen=True)
class CallerIdentity:
    """
    Attributes:
        ip: Client address as reported by the proxy chain.
        user_id: Anonymous user id from the cookie, or freshly minted.
        user_is_new: True when the id was minted for this request and the
            response must set the cookie.
    """
    ip: str
    user_id: str
    user_is_new: bool = False

    @property
    def kind(self) -> str:
        """Identity class for logs: never the address or id itself."""
        return "new_user" if self.user_is_new else "returning_user"


def client_ip(headers: Mapping[str, str]) -> str:
    """Resolve the client address from proxy headers."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_ADDRESS


def new_user_id() -> str:
    return str(uuid.uuid4())


def resolve_identity(
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
    cookie_name: str,
) -> CallerIdentity:
    """Build the caller identity, minting a user id when the cookie is absent."""
    user_id: Optional[str] = cookies.get(cookie_name)
    if user_id:
        return CallerIdentity(ip=client_ip(headers), user_id=user_id)
    return CallerIdentity(ip=client_ip(headers), user_id=new_user_id(), user_is_new=True)
