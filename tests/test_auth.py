from planbook.auth import AuthGate, hash_password


def test_hash_password_is_sha256_hex() -> None:
    digest = hash_password("secret")

    assert len(digest) == 64
    assert digest == hash_password("secret")
    assert digest != hash_password("Secret")


def test_open_gate_without_password() -> None:
    gate = AuthGate(None)

    assert gate.enabled is False
    assert gate.is_authenticated(None) is True
    assert gate.verify("anything") is False


def test_password_and_cookie_checks() -> None:
    gate = AuthGate("secret")

    assert gate.enabled is True
    assert gate.verify("secret") is True
    assert gate.verify("wrong") is False
    assert gate.is_authenticated(None) is False
    assert gate.is_authenticated("forged") is False
    assert gate.is_authenticated(gate.cookie_value()) is True


def test_changing_password_invalidates_cookies() -> None:
    cookie = AuthGate("old").cookie_value()

    assert AuthGate("new").is_authenticated(cookie) is False


def test_precomputed_hash_unlocks_the_same_password() -> None:
    gate = AuthGate(password_hash=hash_password("secret").upper())

    assert gate.enabled is True
    assert gate.verify("secret") is True
    assert gate.verify("wrong") is False
    assert gate.cookie_value() == AuthGate("secret").cookie_value()


def test_hash_wins_over_plain_password() -> None:
    gate = AuthGate("ignored", password_hash=hash_password("secret"))

    assert gate.verify("secret") is True
    assert gate.verify("ignored") is False
