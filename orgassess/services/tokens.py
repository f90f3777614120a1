from typing import Optional
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from flask import current_app

TOKEN_RESET = "reset"
TOKEN_INVITE = "invite"


def _serializer() -> URLSafeTimedSerializer:
    secret = current_app.config["SECRET_KEY"]
    salt = current_app.config.get("EMAIL_TOKEN_SALT", "email-token-v1")
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


def generate(kind: str, identity: str) -> str:
    """
    kind: 'reset' or 'invite'
    identity: lowercased email; survives user id changes across imports.
    """
    return _serializer().dumps({"k": kind, "i": identity})


def verify(kind: str, token: str, max_age_seconds: int) -> Optional[str]:
    try:
        data = _serializer().loads(token, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(data, dict) or data.get("k") != kind:
        return None
    return data.get("i")


def ttl_seconds(kind: str) -> int:
    key = "INVITE_TOKEN_TTL_MINUTES" if kind == TOKEN_INVITE else "RESET_TOKEN_TTL_MINUTES"
    return int(current_app.config.get(key, 120)) * 60
