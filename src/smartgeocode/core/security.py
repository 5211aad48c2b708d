"""JWT bearer credential creation and validation.

Credentials are issued by the external auth collaborator; this service
only verifies them. ``create_access_token`` exists for the operator CLI
and tests, which mint tokens with the shared secret.
"""

from datetime import UTC, datetime, timedelta

import jwt

ACCESS_TOKEN_TYPE = "access"


class InvalidCredentialError(Exception):
    """Raised when a bearer credential is malformed, expired, or of the wrong type."""


def create_access_token(
    subject: str,
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: int = 60,
) -> str:
    """Create a JWT access token.

    Args:
        subject: The account email the token authenticates.
        secret_key: Secret key for signing.
        algorithm: JWT signing algorithm.
        expires_minutes: Token expiration in minutes.

    Returns:
        The encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": subject,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
) -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string to decode.
        secret_key: Secret key used for signing.
        algorithm: JWT signing algorithm.

    Returns:
        The decoded token payload.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the token is invalid.
    """
    return jwt.decode(token, secret_key, algorithms=[algorithm])


def subject_from_token(token: str, secret_key: str, algorithm: str = "HS256") -> str:
    """Return the subject of a valid access token.

    Raises:
        InvalidCredentialError: If the token cannot be used as an access credential.
    """
    try:
        payload = decode_token(token, secret_key, algorithm)
    except jwt.InvalidTokenError as e:
        raise InvalidCredentialError(str(e)) from e

    if payload.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
        msg = "Token is not an access token"
        raise InvalidCredentialError(msg)
    subject = payload.get("sub")
    if not subject:
        msg = "Token has no subject"
        raise InvalidCredentialError(msg)
    return str(subject)
