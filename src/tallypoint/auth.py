from __future__ import annotations

import base64
import binascii
import hmac
from typing import Optional, Tuple

from fastapi import Header, Request

from tallypoint.errors import BadCredentialSyntax, Unauthorized


def parse_basic(authorization: str) -> Tuple[str, str]:
    scheme, _, payload = authorization.partition(" ")
    if scheme != "Basic" or not payload:
        raise BadCredentialSyntax("bad credential syntax")
    try:
        decoded = base64.b64decode(payload.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise BadCredentialSyntax("bad credential syntax")
    user, sep, password = decoded.partition(":")
    if not sep:
        raise BadCredentialSyntax("bad credential syntax")
    return user, password


def basic_header(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def check_credentials(authorization: Optional[str], user: str, password: str) -> None:
    if not authorization:
        raise Unauthorized("unauthorized")
    got_user, got_password = parse_basic(authorization)
    user_ok = hmac.compare_digest(got_user.encode("utf-8"), user.encode("utf-8"))
    password_ok = hmac.compare_digest(got_password.encode("utf-8"), password.encode("utf-8"))
    if not (user_ok and password_ok):
        raise Unauthorized("authorization failed")


def require_auth(request: Request, authorization: str | None = Header(default=None)) -> None:
    settings = request.app.state.settings
    check_credentials(authorization, settings.auth_user, settings.auth_password)
