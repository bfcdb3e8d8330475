import urllib.parse

import pytest

from handshake.errors import (
    InvalidRequest,
    InvalidSession,
    SessionNotFound,
    UpstreamExchangeFailed,
    UpstreamProfileFailed,
)
from handshake.flow import DEFAULT_FAILURE_REASON, DEMO_CLIENT_ID
from handshake.google_oauth2 import DEFAULT_SCOPES, GOOGLE_AUTHORIZE_URL
from handshake.models import ChatPlatform, SessionStatus
from tests.relay_helpers import (
    FakeClock,
    build_flow,
    build_google_exchange,
    google_tokens,
    google_user,
)


def _query(url: str) -> dict:
    return urllib.parse.parse_qs(urllib.parse.urlparse(url).query)


# -- init ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_init_creates_pending_session() -> None:
    flow, store = build_flow()

    result = await flow.init("m1", "c1", "whatsapp")

    session = await store.get(result.state)
    assert session.status is SessionStatus.PENDING
    assert session.minion_id == "m1"
    assert session.chat_id == "c1"
    assert session.chat_platform is ChatPlatform.WHATSAPP
    assert result.expires_in == store.ttl_seconds == 300
    assert len(result.state) == 64


@pytest.mark.asyncio
async def test_init_builds_authorization_url() -> None:
    flow, _ = build_flow()

    result = await flow.init("m1", "c1", "telegram")

    assert result.auth_url.startswith(GOOGLE_AUTHORIZE_URL)
    query = _query(result.auth_url)
    assert query["client_id"] == ["google-client"]
    assert query["redirect_uri"] == ["https://relay.example.com/auth/callback"]
    assert query["state"] == [result.state]
    assert query["scope"] == [" ".join(DEFAULT_SCOPES)]
    assert query["response_type"] == ["code"]
    assert query["prompt"] == ["consent"]
    assert query["access_type"] == ["offline"]


@pytest.mark.asyncio
async def test_init_uses_requested_scopes() -> None:
    flow, _ = build_flow()

    result = await flow.init("m1", "c1", "whatsapp", ["openid", "email"])

    assert _query(result.auth_url)["scope"] == ["openid email"]


@pytest.mark.asyncio
async def test_init_empty_scopes_fall_back_to_defaults() -> None:
    flow, _ = build_flow(scopes=["openid"])

    result = await flow.init("m1", "c1", "whatsapp", [])

    assert _query(result.auth_url)["scope"] == ["openid"]


@pytest.mark.asyncio
async def test_init_without_client_id_uses_demo_client() -> None:
    flow, _ = build_flow()
    flow.client_id = ""

    result = await flow.init("m1", "c1", "whatsapp")

    assert _query(result.auth_url)["client_id"] == [DEMO_CLIENT_ID]


@pytest.mark.asyncio
async def test_init_derives_redirect_from_request_base_url() -> None:
    flow, _ = build_flow(public_url=None)

    result = await flow.init("m1", "c1", "whatsapp", base_url="http://localhost:5173/")

    assert _query(result.auth_url)["redirect_uri"] == ["http://localhost:5173/auth/callback"]


@pytest.mark.asyncio
async def test_init_states_are_unique() -> None:
    flow, store = build_flow()

    states = {(await flow.init("m1", f"c{i}", "whatsapp")).state for i in range(50)}

    assert len(states) == 50
    assert len(store) == 50


@pytest.mark.asyncio
async def test_init_regenerates_colliding_state() -> None:
    generated = iter(["taken", "taken", "fresh"])
    flow, store = build_flow(state_factory=lambda: next(generated))
    await store.create(
        "taken", minion_id="x", chat_id="y", chat_platform=ChatPlatform.TELEGRAM
    )

    result = await flow.init("m1", "c1", "whatsapp")

    assert result.state == "fresh"
    assert (await store.get("taken")).minion_id == "x"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("minion_id", "chat_id", "chat_platform"),
    [
        ("", "c1", "whatsapp"),
        ("m1", None, "whatsapp"),
        ("m1", "c1", None),
        ("m1", "c1", "signal"),
        ("m1", "c1", "WhatsApp"),
        (42, "c1", "whatsapp"),
    ],
)
async def test_init_rejects_invalid_identity(minion_id, chat_id, chat_platform) -> None:
    flow, store = build_flow()

    with pytest.raises(InvalidRequest):
        await flow.init(minion_id, chat_id, chat_platform)

    assert len(store) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("scopes", ["openid email", ["openid", ""], [1, 2]])
async def test_init_rejects_malformed_scopes(scopes) -> None:
    flow, store = build_flow()

    with pytest.raises(InvalidRequest, match="scopes"):
        await flow.init("m1", "c1", "whatsapp", scopes)

    assert len(store) == 0


# -- callback ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_callback_demo_completes_session() -> None:
    flow, store = build_flow()
    state = (await flow.init("m1", "c1", "whatsapp")).state

    result = await flow.callback("abc", state)

    assert result.demo is True
    assert result.tokens.access_token.startswith("demo_token_")
    session = await store.get(state)
    assert session.status is SessionStatus.COMPLETED
    assert session.tokens == result.tokens
    assert session.user_info == result.user_info


@pytest.mark.asyncio
async def test_callback_google_exchange_passes_redirect_uri() -> None:
    seen = {}

    async def exchange_code_fn(**kwargs):
        seen.update(kwargs)
        return google_tokens()

    flow, store = build_flow(exchange=build_google_exchange(exchange_code_fn=exchange_code_fn))
    state = (await flow.init("m1", "c1", "whatsapp")).state

    result = await flow.callback("auth-code", state)

    assert seen["code"] == "auth-code"
    assert seen["redirect_uri"] == "https://relay.example.com/auth/callback"
    assert result.demo is False
    assert result.user_info == google_user()
    assert (await store.get(state)).tokens == google_tokens()


@pytest.mark.asyncio
async def test_callback_unknown_state_creates_nothing() -> None:
    flow, store = build_flow()

    with pytest.raises(InvalidSession):
        await flow.callback("abc", "nope")

    assert await store.get("nope") is None
    assert len(store) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(("code", "state"), [("", "s"), ("abc", ""), (None, None)])
async def test_callback_requires_code_and_state(code, state) -> None:
    flow, _ = build_flow()

    with pytest.raises(InvalidRequest):
        await flow.callback(code, state)


@pytest.mark.asyncio
async def test_callback_exchange_failure_leaves_session_pending() -> None:
    async def exchange_code_fn(**kwargs):
        del kwargs
        raise UpstreamExchangeFailed("invalid_grant")

    flow, store = build_flow(exchange=build_google_exchange(exchange_code_fn=exchange_code_fn))
    state = (await flow.init("m1", "c1", "whatsapp")).state

    with pytest.raises(UpstreamExchangeFailed, match="invalid_grant"):
        await flow.callback("abc", state)

    assert (await store.get(state)).status is SessionStatus.PENDING


@pytest.mark.asyncio
async def test_callback_profile_failure_propagates() -> None:
    async def fetch_user_info_fn(access_token, **kwargs):
        del access_token, kwargs
        raise UpstreamProfileFailed("Userinfo request failed")

    flow, store = build_flow(
        exchange=build_google_exchange(fetch_user_info_fn=fetch_user_info_fn)
    )
    state = (await flow.init("m1", "c1", "whatsapp")).state

    with pytest.raises(UpstreamProfileFailed):
        await flow.callback("abc", state)

    assert (await store.get(state)).tokens is None


@pytest.mark.asyncio
async def test_second_callback_does_not_replace_tokens() -> None:
    calls = []

    async def exchange_code_fn(**kwargs):
        calls.append(kwargs["code"])
        return google_tokens()

    flow, store = build_flow(exchange=build_google_exchange(exchange_code_fn=exchange_code_fn))
    state = (await flow.init("m1", "c1", "whatsapp")).state
    await flow.callback("first", state)

    with pytest.raises(InvalidSession, match="already completed"):
        await flow.callback("second", state)

    assert calls == ["first"]
    assert (await store.get(state)).tokens == google_tokens()


@pytest.mark.asyncio
async def test_callback_after_failure_is_rejected() -> None:
    flow, store = build_flow()
    state = (await flow.init("m1", "c1", "whatsapp")).state
    await flow.notify(state, False, "access_denied")

    with pytest.raises(InvalidSession, match="already failed"):
        await flow.callback("abc", state)

    session = await store.get(state)
    assert session.status is SessionStatus.FAILED
    assert session.tokens is None


@pytest.mark.asyncio
async def test_callback_loses_race_against_notify() -> None:
    holder = {}

    async def exchange_code_fn(**kwargs):
        del kwargs
        await holder["flow"].notify(holder["state"], False, "access_denied")
        return google_tokens()

    flow, store = build_flow(exchange=build_google_exchange(exchange_code_fn=exchange_code_fn))
    state = (await flow.init("m1", "c1", "whatsapp")).state
    holder.update(flow=flow, state=state)

    with pytest.raises(InvalidSession):
        await flow.callback("abc", state)

    session = await store.get(state)
    assert session.status is SessionStatus.FAILED
    assert session.error == "access_denied"
    assert session.tokens is None


# -- notify --------------------------------------------------------------------


@pytest.mark.asyncio
async def test_notify_failure_marks_session_failed() -> None:
    flow, store = build_flow()
    state = (await flow.init("m1", "c1", "whatsapp")).state

    result = await flow.notify(state, False, "access_denied")

    assert result.updated is True
    session = await store.get(state)
    assert session.status is SessionStatus.FAILED
    assert session.error == "access_denied"


@pytest.mark.asyncio
async def test_notify_prefers_error_description() -> None:
    flow, store = build_flow()
    state = (await flow.init("m1", "c1", "whatsapp")).state

    await flow.notify(state, False, "access_denied", "The user denied access")

    assert (await store.get(state)).error == "The user denied access"


@pytest.mark.asyncio
async def test_notify_failure_without_detail_uses_default_reason() -> None:
    flow, store = build_flow()
    state = (await flow.init("m1", "c1", "whatsapp")).state

    await flow.notify(state, False)

    assert (await store.get(state)).error == DEFAULT_FAILURE_REASON


@pytest.mark.asyncio
async def test_notify_success_is_acknowledged_without_transition() -> None:
    flow, store = build_flow()
    state = (await flow.init("m1", "c1", "whatsapp")).state

    result = await flow.notify(state, True)

    assert result.updated is False
    assert (await store.get(state)).status is SessionStatus.PENDING


@pytest.mark.asyncio
async def test_notify_after_completion_keeps_tokens() -> None:
    flow, store = build_flow()
    state = (await flow.init("m1", "c1", "whatsapp")).state
    await flow.callback("abc", state)

    result = await flow.notify(state, False, "late_error")

    assert result.updated is False
    session = await store.get(state)
    assert session.status is SessionStatus.COMPLETED
    assert session.error is None


@pytest.mark.asyncio
async def test_notify_missing_state() -> None:
    flow, _ = build_flow()

    with pytest.raises(InvalidRequest):
        await flow.notify("", False, "access_denied")


@pytest.mark.asyncio
async def test_notify_unknown_state() -> None:
    flow, _ = build_flow()

    with pytest.raises(SessionNotFound):
        await flow.notify("nope", False, "access_denied")


@pytest.mark.asyncio
async def test_callback_after_expiry_sweep_is_invalid() -> None:
    clock = FakeClock()
    flow, store = build_flow(clock=clock)
    state = (await flow.init("m1", "c1", "whatsapp")).state

    clock.advance(store.ttl_seconds + 1)
    await store.sweep()

    with pytest.raises(InvalidSession):
        await flow.callback("abc", state)
    with pytest.raises(SessionNotFound):
        await flow.notify(state, False, "access_denied")
