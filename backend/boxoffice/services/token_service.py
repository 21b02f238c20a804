# Overview: Check-in token codec; HMAC-signed, deterministic, bound to one order.

"""
Check-in tokens.

Format (what the QR code carries):

    <base64url(JSON claims)>.<hex HMAC-SHA256 truncated to 32 chars>

Claims are {"o": order_id, "p": payment_ref, "n": ticket_count, "v": 1}.
The payment reference only exists once the gateway confirms payment, so a
token cannot be built from information the buyer holds in advance, and the
signature makes any edited claim detectable.

Minting is deterministic: the same order always yields the same token, which
lets the confirmation email be re-sent without changing what the door
expects.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass

from flask import current_app

from ..errors import ErrorKind, TicketingError


TOKEN_VERSION = 1
SIGNATURE_LENGTH = 32

# Keeps the check-in key distinct from other uses of SECRET_KEY
_KEY_DOMAIN = b"boxoffice:checkin-token:v1"


@dataclass(frozen=True)
class CheckinClaims:
    order_id: int
    payment_ref: str
    ticket_count: int


def _signing_key() -> bytes:
    secret = current_app.config["SECRET_KEY"]
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hmac.new(secret, _KEY_DOMAIN, hashlib.sha256).digest()


def _sign(payload: bytes) -> str:
    return hmac.new(_signing_key(), payload, hashlib.sha256).hexdigest()[:SIGNATURE_LENGTH]


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def mint_token(order_id: int, payment_ref: str, ticket_count: int) -> str:
    claims = {"o": order_id, "p": payment_ref, "n": ticket_count, "v": TOKEN_VERSION}
    payload = _b64encode(json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    return f"{payload}.{_sign(payload.encode('ascii'))}"


def _invalid(reason: str) -> TicketingError:
    return TicketingError(
        ErrorKind.INVALID_TOKEN,
        "Ticket not recognised. This may be a fake or damaged ticket.",
        details={"reason": reason},
    )


def decode_token(token: str | None) -> CheckinClaims:
    """
    Verify the signature and return the claims.

    Raises InvalidToken for anything that is not a token minted here.
    """
    if not token or not isinstance(token, str):
        raise _invalid("empty")

    token = token.strip()
    if not token.isascii():
        raise _invalid("malformed")

    payload, sep, signature = token.partition(".")
    if not sep or not payload or not signature:
        raise _invalid("malformed")

    if not hmac.compare_digest(signature.encode("ascii"), _sign(payload.encode("ascii")).encode("ascii")):
        raise _invalid("bad_signature")

    try:
        claims = json.loads(_b64decode(payload))
    except (binascii.Error, ValueError):
        raise _invalid("malformed")

    if not isinstance(claims, dict) or claims.get("v") != TOKEN_VERSION:
        raise _invalid("unsupported_version")

    order_id = claims.get("o")
    payment_ref = claims.get("p")
    ticket_count = claims.get("n")
    if not isinstance(order_id, int) or not isinstance(payment_ref, str) or not isinstance(ticket_count, int):
        raise _invalid("malformed")

    return CheckinClaims(order_id=order_id, payment_ref=payment_ref, ticket_count=ticket_count)
