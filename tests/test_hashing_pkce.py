# Tests for secret hashing, token generation and PKCE verification.
# Created: 2026-10-19

import secrets

from toolgate.api.oauth2.pkce import s256_challenge, verify_pkce
from toolgate.hashing import generate_token, hash_secret, secrets_match, short_hash


class TestHashing:
    def test_deterministic_hex_digest(self):
        h = hash_secret("tg_secret")
        assert h == hash_secret("tg_secret")
        assert len(h) == 64
        int(h, 16)

    def test_pepper_changes_digest(self):
        assert hash_secret("value") != hash_secret("value", pepper="pepper")
        assert hash_secret("value", "pepper") == hash_secret("value", "pepper")

    def test_secrets_match(self):
        stored = hash_secret("s3cret", "p")
        assert secrets_match("s3cret", stored, "p") is True
        assert secrets_match("s3cret", stored) is False
        assert secrets_match("other", stored, "p") is False

    def test_generate_token(self):
        a = generate_token()
        b = generate_token()
        assert a != b
        assert len(a) >= 43
        assert generate_token(prefix="tg_").startswith("tg_")

    def test_short_hash(self):
        assert short_hash(hash_secret("x")) == hash_secret("x")[:8]


class TestPKCE:
    def test_rfc7636_appendix_b_vector(self):
        verifier = "dBjftJeZ4CVP-mJ92K9DvkIlHcHCjVjx5sNxNmvYaoo"
        assert s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_random_verifiers_roundtrip(self):
        for _ in range(50):
            verifier = secrets.token_urlsafe(32)
            assert verify_pkce(verifier, s256_challenge(verifier), "S256")

    def test_mutated_verifier_fails(self):
        for _ in range(50):
            verifier = secrets.token_urlsafe(32)
            challenge = s256_challenge(verifier)
            pos = secrets.randbelow(len(verifier))
            flipped = chr(ord(verifier[pos]) ^ 1)
            mutated = verifier[:pos] + flipped + verifier[pos + 1 :]
            assert not verify_pkce(mutated, challenge, "S256")

    def test_plain_method_rejected(self):
        verifier = secrets.token_urlsafe(32)
        assert not verify_pkce(verifier, verifier, "plain")

    def test_empty_inputs_rejected(self):
        assert not verify_pkce("", s256_challenge(""), "S256")
        assert not verify_pkce("abc", "", "S256")

    def test_mutated_challenge_fails(self):
        for _ in range(50):
            verifier = secrets.token_urlsafe(32)
            challenge = s256_challenge(verifier)
            pos = secrets.randbelow(len(challenge))
            flipped = chr(ord(challenge[pos]) ^ 1)
            mutated = challenge[:pos] + flipped + challenge[pos + 1 :]
            assert not verify_pkce(verifier, mutated, "S256")
