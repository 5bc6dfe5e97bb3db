"""
Signed, self-contained tokens with a purpose tag.

Verification tokens, reset tokens and access tokens share one issuer. A token
minted for one purpose never verifies for another, which keeps a registration
token out of the password-reset flow and vice versa. There is no revocation
list: a token stays valid until its ``exp``.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional

from jose import JWTError, jwt

from placement_auth.services.exceptions import InvalidToken
from placement_auth.services.security import SecurityConfig, SecurityUtils

PURPOSE_VERIFICATION = "verification"
PURPOSE_PASSWORD_RESET = "password_reset"
PURPOSE_ACCESS = "access"


class TokenIssuer:
    def __init__(self, secret_key: str, algorithm: str = "HS256",
                 clock: Optional[Callable[[], datetime]] = None):
        if not secret_key:
            raise ValueError("TokenIssuer requires a signing secret")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.clock = clock or SecurityUtils.get_utc_now

    @classmethod
    def from_config(cls, config: SecurityConfig,
                    clock: Optional[Callable[[], datetime]] = None) -> "TokenIssuer":
        return cls(config.jwt_secret_key, config.jwt_algorithm, clock=clock)

    def mint(self, claims: dict, purpose: str, ttl: timedelta) -> str:
        to_encode = claims.copy()
        now = self.clock()
        to_encode.update({
            "purpose": purpose,
            "iat": now,
            "exp": now + ttl,
        })
        return jwt.encode(to_encode, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str, expected_purpose: str) -> dict:
        """
        Return the claims, or raise ``InvalidToken`` on bad signature, expiry or purpose.
        Expiry is judged by the issuer's clock, the same one ``mint`` stamps ``exp`` with.
        """
        if not token:
            raise InvalidToken()
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self.algorithm],
                                options={"verify_exp": False})
        except JWTError:
            raise InvalidToken()

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self.clock().timestamp():
            raise InvalidToken()

        if claims.get("purpose") != expected_purpose:
            SecurityUtils.log_security_event(
                "token_purpose_mismatch",
                {"expected": expected_purpose, "actual": claims.get("purpose")},
            )
            raise InvalidToken()
        return claims
