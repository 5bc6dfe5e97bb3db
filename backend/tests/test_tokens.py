"""
Tests for purpose-tagged signed tokens.
"""
import pytest
from datetime import timedelta
from jose import jwt

from placement_auth.services.exceptions import InvalidToken
from placement_auth.services.tokens import (
    PURPOSE_ACCESS, PURPOSE_PASSWORD_RESET, PURPOSE_VERIFICATION, TokenIssuer,
)


class TestTokenIssuer:
    def test_mint_and_verify_returns_claims(self, issuer):
        token = issuer.mint({"sub": "a@x.com"}, PURPOSE_VERIFICATION, timedelta(minutes=10))

        claims = issuer.verify(token, PURPOSE_VERIFICATION)
        assert claims["sub"] == "a@x.com"
        assert claims["purpose"] == PURPOSE_VERIFICATION
        assert claims["exp"] - claims["iat"] == 600

    def test_verification_token_rejected_for_password_reset(self, issuer):
        token = issuer.mint({"sub": "a@x.com"}, PURPOSE_VERIFICATION, timedelta(minutes=10))

        with pytest.raises(InvalidToken):
            issuer.verify(token, PURPOSE_PASSWORD_RESET)

    def test_reset_token_rejected_for_verification_and_access(self, issuer):
        token = issuer.mint({"email": "a@x.com", "user_id": 1}, PURPOSE_PASSWORD_RESET, timedelta(minutes=15))

        with pytest.raises(InvalidToken):
            issuer.verify(token, PURPOSE_VERIFICATION)
        with pytest.raises(InvalidToken):
            issuer.verify(token, PURPOSE_ACCESS)

    def test_expired_token_is_rejected(self, issuer, clock):
        token = issuer.mint({"sub": "a@x.com"}, PURPOSE_VERIFICATION, timedelta(minutes=10))
        clock.advance(minutes=11)

        with pytest.raises(InvalidToken):
            issuer.verify(token, PURPOSE_VERIFICATION)

    def test_expiry_follows_issuer_clock(self, issuer, clock):
        token = issuer.mint({"sub": "a@x.com"}, PURPOSE_VERIFICATION, timedelta(minutes=10))

        clock.advance(minutes=9, seconds=59)
        assert issuer.verify(token, PURPOSE_VERIFICATION)["sub"] == "a@x.com"

        clock.advance(seconds=1)
        with pytest.raises(InvalidToken):
            issuer.verify(token, PURPOSE_VERIFICATION)

    def test_token_without_exp_is_rejected(self, config):
        token = jwt.encode({"sub": "a@x.com", "purpose": PURPOSE_VERIFICATION}, config.jwt_secret_key,
                           algorithm=config.jwt_algorithm)

        with pytest.raises(InvalidToken):
            TokenIssuer.from_config(config).verify(token, PURPOSE_VERIFICATION)

    def test_token_signed_with_other_secret_is_rejected(self, issuer):
        other = TokenIssuer("another_secret_key_that_is_at_least_32_chars_long")
        token = other.mint({"sub": "a@x.com"}, PURPOSE_VERIFICATION, timedelta(minutes=10))

        with pytest.raises(InvalidToken):
            issuer.verify(token, PURPOSE_VERIFICATION)

    def test_tampered_payload_is_rejected(self, issuer, config):
        token = issuer.mint({"sub": "a@x.com"}, PURPOSE_VERIFICATION, timedelta(minutes=10))
        header, payload, signature = token.split(".")
        forged = jwt.encode(
            {"sub": "a@x.com", "purpose": PURPOSE_PASSWORD_RESET, "exp": 9999999999},
            "wrong_secret_key_wrong_secret_key_wrong",
            algorithm=config.jwt_algorithm,
        )
        forged_payload = forged.split(".")[1]

        with pytest.raises(InvalidToken):
            issuer.verify(".".join([header, forged_payload, signature]), PURPOSE_PASSWORD_RESET)

    def test_token_without_purpose_is_rejected(self, config):
        token = jwt.encode({"sub": "a@x.com", "exp": 9999999999}, config.jwt_secret_key,
                           algorithm=config.jwt_algorithm)

        with pytest.raises(InvalidToken):
            TokenIssuer.from_config(config).verify(token, PURPOSE_VERIFICATION)

    @pytest.mark.parametrize("token", ["", None, "not-a-jwt", "a.b.c"])
    def test_garbage_is_rejected(self, issuer, token):
        with pytest.raises(InvalidToken):
            issuer.verify(token, PURPOSE_VERIFICATION)

    def test_secret_is_required(self):
        with pytest.raises(ValueError):
            TokenIssuer("")
