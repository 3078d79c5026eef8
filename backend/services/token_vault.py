"""Token vault - seals provider credentials at rest.

A sealed value is an HS256-signed JWT carrying the payload under a single
claim next to its issue time and expiry.
Tampering or expiry makes open() fail, which bounds the usefulness of a
leaked ciphertext.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from config import Settings
from services.errors import InvalidOrExpiredSeal

PAYLOAD_CLAIM = "payload"


class TokenVault:
    """Stateless seal/open transform keyed by the process secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=2),
    ):
        if not secret:
            raise ValueError("Token vault secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self.ttl = ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenVault":
        return cls(
            settings.jwt_secret,
            settings.jwt_algorithm,
            timedelta(hours=settings.token_seal_ttl_hours),
        )

    def seal(self, payload: Any) -> str:
        """Sign a JSON-serializable payload into a self-contained, expiring token."""
        now = datetime.now(timezone.utc)
        claims = {PAYLOAD_CLAIM: payload, "iat": now, "exp": now + self.ttl}
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def open(self, sealed: str) -> Any:
        """Verify signature and expiry and return the original payload."""
        if not sealed:
            raise InvalidOrExpiredSeal("Empty sealed value")
        try:
            claims = jwt.decode(sealed, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            raise InvalidOrExpiredSeal(str(e)) from e
        if PAYLOAD_CLAIM not in claims:
            raise InvalidOrExpiredSeal("Sealed value carries no payload")
        return claims[PAYLOAD_CLAIM]

    # Credentials are stored as {"token": <value>}

    def seal_token(self, token: str) -> str:
        return self.seal({"token": token})

    def open_token(self, sealed: str) -> str:
        payload = self.open(sealed)
        token = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise InvalidOrExpiredSeal("Sealed payload carries no token")
        return token
