import pytest

from auth import AccountStore, AuthSession


@pytest.fixture
def session(db, notifications):
    return AuthSession(AccountStore(), notifications, oauth_authorize_url="https://auth.test/authorize")


@pytest.fixture
def events(session):
    seen = []

    async def listener(event, user):
        seen.append((event, user.id if user else None))

    session.subscribe(listener)
    return seen


async def test_sign_up_then_login(session, events, notifications, db):
    created = await session.sign_up("Ana@Example.ao ", "segredo1")
    assert notifications.current.message == "Conta criada com sucesso! Já pode iniciar sessão."
    # Signing up does not sign in.
    assert not session.is_authenticated
    assert events == []

    stored = await db.users.find_one({"email": "ana@example.ao"})
    assert stored["password_hash"] != "segredo1"

    user = await session.login("ana@example.ao", "segredo1")
    assert user.id == created.id
    assert session.is_authenticated
    assert events == [("SIGNED_IN", created.id)]
    assert notifications.current.message == "Login bem-sucedido!"


async def test_duplicate_sign_up(session, notifications):
    await session.sign_up("ana@example.ao", "segredo1")
    assert await session.sign_up("ANA@example.ao", "outra123") is None
    assert notifications.current.type == "error"


async def test_wrong_password(session, events, notifications):
    await session.sign_up("ana@example.ao", "segredo1")
    assert await session.login("ana@example.ao", "errada99") is None
    assert await session.login("ninguem@example.ao", "segredo1") is None

    assert not session.is_authenticated
    assert events == []
    assert notifications.current.message == "Credenciais inválidas."


async def test_logout_emits_signed_out(session, events):
    created = await session.sign_up("ana@example.ao", "segredo1")
    await session.login("ana@example.ao", "segredo1")
    await session.logout()
    await session.logout()

    assert events == [("SIGNED_IN", created.id), ("SIGNED_OUT", None)]


async def test_switching_user_signs_out_first(session, events):
    ana = await session.sign_up("ana@example.ao", "segredo1")
    rui = await session.sign_up("rui@example.ao", "segredo2")
    await session.login("ana@example.ao", "segredo1")
    await session.login("ana@example.ao", "segredo1")
    await session.login("rui@example.ao", "segredo2")

    assert events == [("SIGNED_IN", ana.id), ("SIGNED_OUT", None), ("SIGNED_IN", rui.id)]


def test_oauth_url(session, notifications):
    url = session.sign_in_with_oauth("google", "http://localhost:5173/#/")
    assert url.startswith("https://auth.test/authorize?provider=google&redirect_to=")

    assert session.sign_in_with_oauth("myspace", "/") is None
    assert notifications.current.message == "Falha no login com myspace."


def test_oauth_without_authorize_url(notifications):
    session = AuthSession(AccountStore(), notifications)
    assert session.sign_in_with_oauth("google", "/") is None
    assert notifications.current.message == "Falha no login com Google."
