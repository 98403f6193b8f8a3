"""QR payloads shown on the rewards card and read by the staff terminal."""

from __future__ import annotations

import re
from uuid import UUID

DEFAULT_QR_PREFIX = "cloudcafe"

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class InvalidIdentifierFormatError(ValueError):
    code = "invalid_identifier_format"

    def __init__(self, payload: str | None) -> None:
        super().__init__("Invalid customer code - scan the QR code on the customer's rewards card")
        self.payload = payload


def format_customer_identifier(user_id: UUID | str, prefix: str = DEFAULT_QR_PREFIX) -> str:
    return f"{prefix}:{user_id}"


def parse_customer_identifier(payload: str | None, prefix: str = DEFAULT_QR_PREFIX) -> UUID:
    """Return the user id encoded in ``<prefix>:<uuid>``.

    A bare UUID is accepted as well since staff can type the id by hand.
    """

    if not payload:
        raise InvalidIdentifierFormatError(payload)

    candidate = payload.strip()
    marker = f"{prefix}:"
    if candidate.startswith(marker):
        candidate = candidate[len(marker):]

    if not _UUID_PATTERN.match(candidate):
        raise InvalidIdentifierFormatError(payload)
    return UUID(candidate)


__all__ = [
    "DEFAULT_QR_PREFIX",
    "InvalidIdentifierFormatError",
    "format_customer_identifier",
    "parse_customer_identifier",
]
