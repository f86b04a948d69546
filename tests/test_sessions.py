import pytest

from conftest import make_product
from database import Settings
from schemas import CartItem, User
from sessions import SessionRegistry
from storage import ImageBucket


def registry(tmp_path, **overrides):
    settings = Settings(DATABASE_URL="mongodb://localhost:27017", API_KEY="test-key", **overrides)
    return SessionRegistry(settings, ImageBucket(tmp_path, "http://localhost:8000"))


def test_sessions_are_found_by_id(tmp_path):
    sessions = registry(tmp_path)
    session = sessions.create()

    assert sessions.get(session.id) is session
    assert sessions.get("unknown") is None
    assert sessions.get(None) is None


def test_session_count_is_capped(tmp_path):
    sessions = registry(tmp_path, MAX_SESSIONS=2)
    first = sessions.create()
    second = sessions.create()
    first.last_seen -= 10
    third = sessions.create()

    assert len(sessions) == 2
    assert sessions.get(first.id) is None
    assert sessions.get(second.id) is second
    assert sessions.get(third.id) is third


@pytest.mark.parametrize("ttl_anon,ttl,idle,kept", [
    (60, 3600, 30, True),
    (60, 3600, 120, False),
])
def test_empty_anonymous_sessions_expire_early(tmp_path, ttl_anon, ttl, idle, kept):
    sessions = registry(tmp_path, ANON_SESSION_TTL_SECONDS=ttl_anon, SESSION_TTL_SECONDS=ttl)
    session = sessions.create()
    session.last_seen -= idle

    assert (sessions.get(session.id) is session) == kept


def test_sessions_with_state_keep_the_long_ttl(tmp_path):
    sessions = registry(tmp_path, ANON_SESSION_TTL_SECONDS=60, SESSION_TTL_SECONDS=3600)
    signed_in = sessions.create()
    signed_in.auth.user = User(id="u1", email="ana@example.ao")
    shopping = sessions.create()
    shopping.cart.items = [CartItem(product=make_product("A"), quantity=1)]
    for session in (signed_in, shopping):
        session.last_seen -= 600

    assert sessions.get(signed_in.id) is signed_in
    assert sessions.get(shopping.id) is shopping
