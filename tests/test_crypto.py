"""Unit tests for password hashing, opaque tokens and signed bearer tokens."""

import base64
import json
import time

import pytest

from suiteauth.service import crypto


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


class TestPasswordHashing:
    def test_round_trip(self):
        blob = crypto.hash_password("Abcd1234")
        assert crypto.verify_password("Abcd1234", blob) is True

    def test_blob_is_salt_plus_key(self):
        blob = crypto.hash_password("Abcd1234")
        raw = base64.b64decode(blob)
        assert len(raw) == crypto.SALT_BYTES + crypto.KEY_BYTES
        assert "Abcd1234" not in blob

    def test_salts_are_unique(self):
        assert crypto.hash_password("Abcd1234") != crypto.hash_password("Abcd1234")

    def test_every_single_character_mutation_fails(self):
        password = "Abcd1234"
        blob = crypto.hash_password(password)
        for i in range(len(password)):
            mutated = password[:i] + chr(ord(password[i]) ^ 1) + password[i + 1 :]
            assert crypto.verify_password(mutated, blob) is False
        assert crypto.verify_password(password + "x", blob) is False
        assert crypto.verify_password(password[:-1], blob) is False

    @pytest.mark.parametrize(
        "stored",
        [None, "", "not base64!!", base64.b64encode(b"short").decode(), "QUJD\x00"],
    )
    def test_malformed_hash_fails_closed(self, stored):
        assert crypto.verify_password("Abcd1234", stored) is False

    def test_iteration_count_is_part_of_the_hash(self):
        blob = crypto.hash_password("Abcd1234", iterations=1000)
        assert crypto.verify_password("Abcd1234", blob, iterations=1000) is True
        assert crypto.verify_password("Abcd1234", blob, iterations=2000) is False


class TestGenerateToken:
    def test_url_safe_without_padding(self):
        token = crypto.generate_token(48)
        assert "=" not in token
        assert "+" not in token and "/" not in token
        # 48 bytes -> 64 base64 characters
        assert len(token) == 64

    def test_tokens_differ(self):
        assert crypto.generate_token(16) != crypto.generate_token(16)

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            crypto.generate_token(0)


class TestSignedTokens:
    SECRET = "a" * 40

    def test_sign_and_verify(self):
        token = crypto.sign({"sub": "1", "sid": "abc"}, self.SECRET, 60)
        claims = crypto.verify(token, self.SECRET)
        assert claims["sub"] == "1"
        assert claims["sid"] == "abc"
        assert claims["exp"] - claims["iat"] == 60

    def test_three_url_safe_segments(self):
        token = crypto.sign({"sub": "1"}, self.SECRET, 60)
        segments = token.split(".")
        assert len(segments) == 3
        assert all("=" not in s for s in segments)

    def test_wrong_secret_never_verifies(self):
        token = crypto.sign({"sub": "1"}, "secret-A" * 5, 60)
        assert crypto.verify(token, "secret-B" * 5) is None

    def test_expired_token_fails_despite_valid_signature(self):
        issued = time.time() - 120
        token = crypto.sign({"sub": "1"}, self.SECRET, 60, now=issued)
        assert crypto.verify(token, self.SECRET) is None
        # Same token verifies at a moment before its expiry
        assert crypto.verify(token, self.SECRET, now=issued + 30) is not None

    def test_tampered_payload_is_rejected(self):
        token = crypto.sign({"sub": "1", "role": "client"}, self.SECRET, 60)
        header, _payload, signature = token.split(".")
        forged = _b64({"sub": "1", "role": "admin", "exp": int(time.time()) + 60})
        assert crypto.verify(f"{header}.{forged}.{signature}", self.SECRET) is None

    def test_alg_none_is_rejected(self):
        header = _b64({"alg": "none", "typ": "JWT"})
        payload = _b64({"sub": "1", "exp": int(time.time()) + 60})
        assert crypto.verify(f"{header}.{payload}.", self.SECRET) is None

    @pytest.mark.parametrize(
        "token",
        [None, "", "abc", "a.b", "a.b.c.d", "!!!.???.***", "ü.ö.ä"],
    )
    def test_malformed_input_returns_none(self, token):
        assert crypto.verify(token, self.SECRET) is None

    def test_missing_exp_is_rejected(self):
        header = _b64({"alg": "HS256", "typ": "JWT"})
        payload = _b64({"sub": "1"})
        signing_input = f"{header}.{payload}"
        signature = crypto._signature(signing_input, self.SECRET)
        assert crypto.verify(f"{signing_input}.{signature}", self.SECRET) is None
