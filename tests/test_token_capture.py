"""
Testes para o módulo streamfinder.core.token_capture, contra o FakeDriver.
"""

import asyncio

import pytest

from conftest import FakeDriver, SlowLoadDriver, player_body
from streamfinder.core.driver import InterceptedRequest
from streamfinder.core.errors import CaptureTimeout, LaunchError
from streamfinder.core.session_store import DegradedSession, Session
from streamfinder.core.token_capture import CaptureState, TokenCapture
from streamfinder.plugins.specific_sites import youtube

PLAYER_URL = "https://www.youtube.com/youtubei/v1/player?prettyPrint=false"
NEXT_URL = "https://www.youtube.com/youtubei/v1/next?prettyPrint=false"

CLIENT_CONTEXT = {"clientVersion": "2.20250401.01.00", "sts": 20180, "userAgent": "Mozilla/5.0 Test"}

BROWSER_COOKIES = [
    {"name": "VISITOR_INFO1_LIVE", "value": "abc", "domain": ".youtube.com", "path": "/",
     "expires": -1, "httpOnly": True, "secure": True},
    {"name": "NID", "value": "zzz", "domain": ".google.com", "path": "/",
     "expires": 1900000000, "httpOnly": True, "secure": True},
]


def make_capture(store, driver, **kwargs):
    kwargs.setdefault("poll_interval", 0.02)
    kwargs.setdefault("finalize_grace", 1.0)
    return TokenCapture(store, driver_factory=lambda: driver, **kwargs)


@pytest.mark.asyncio
async def test_capture_full_session_and_round_trip(store):
    driver = FakeDriver(
        events=[(0.02, PLAYER_URL, player_body("PT-1", "V1"))],
        evaluations={youtube.CLIENT_CONTEXT_SCRIPT: CLIENT_CONTEXT},
        cookies=BROWSER_COOKIES,
    )
    capture = make_capture(store, driver)

    session = await capture.capture("abc123", timeout_budget=2.0)

    assert type(session) is Session
    assert session.visitor_id == "V1"
    assert session.proof_token == "PT-1"
    assert session.client_version == "2.20250401.01.00"
    assert session.signature_timestamp == 20180
    assert [c.name for c in session.cookies] == ["VISITOR_INFO1_LIVE"]

    loaded = store.load()
    assert loaded.usable
    assert loaded.session == session
    assert driver.closed
    assert driver.navigations == [youtube.watch_url("abc123")]


@pytest.mark.asyncio
async def test_hooks_armed_before_navigation(store):
    driver = FakeDriver(events=[(0.0, PLAYER_URL, player_body("PT-1", "V1"))])
    session = await make_capture(store, driver).capture("abc123", timeout_budget=1.0)
    assert session.proof_token == "PT-1"


@pytest.mark.asyncio
async def test_visitor_from_page_config_gives_degraded_session(store):
    driver = FakeDriver(evaluations={youtube.VISITOR_DATA_SCRIPT: "V-PAGE"})
    capture = make_capture(store, driver)

    session = await capture.capture("abc123", timeout_budget=0.3)

    assert isinstance(session, DegradedSession)
    assert session.visitor_id == "V-PAGE"
    assert session.proof_token == ""
    assert store.load().usable
    assert driver.closed


@pytest.mark.asyncio
async def test_nothing_captured_raises_capture_timeout(store):
    driver = FakeDriver()
    capture = make_capture(store, driver)

    with pytest.raises(CaptureTimeout) as exc_info:
        await capture.capture("abc123", timeout_budget=0.3)

    assert exc_info.value.stage == "capture"
    assert exc_info.value.elapsed is not None
    assert driver.closed
    assert not store.path.exists()


@pytest.mark.asyncio
async def test_launch_error_propagates_and_driver_is_closed(store):
    driver = FakeDriver(launch_error=LaunchError("sem navegador", stage="launch"))
    capture = make_capture(store, driver)

    with pytest.raises(LaunchError) as exc_info:
        await capture.capture("abc123", timeout_budget=1.0)
    assert exc_info.value.elapsed is not None
    assert driver.closed
    assert capture.calls == 1


@pytest.mark.asyncio
async def test_navigation_failure_still_uses_hooks(store):
    driver = FakeDriver(
        events=[(0.02, PLAYER_URL, player_body("PT-1", "V1"))],
        navigate_error=RuntimeError("net::ERR_ABORTED"),
    )
    session = await make_capture(store, driver).capture("abc123", timeout_budget=1.0)
    assert session.proof_token == "PT-1"
    assert driver.closed


@pytest.mark.asyncio
async def test_play_escalation_before_token_arrives(store):
    driver = FakeDriver(events=[(0.9, PLAYER_URL, player_body("PT-1", "V1"))])
    session = await make_capture(store, driver).capture("abc123", timeout_budget=2.0)

    assert session.proof_token == "PT-1"
    assert driver.evaluate_count(youtube.DISMISS_AND_PLAY_SCRIPT) == 1


@pytest.mark.asyncio
async def test_embed_escalation_triggers_capture(store):
    driver = FakeDriver(
        navigate_events={"/embed/": [(0.01, PLAYER_URL, player_body("PT-EMBED", "V1"))]},
    )
    session = await make_capture(store, driver).capture("abc123", timeout_budget=1.0)

    assert session.proof_token == "PT-EMBED"
    assert driver.navigations == [youtube.watch_url("abc123"), youtube.embed_url("abc123")]
    assert driver.evaluate_count(youtube.EMBED_PLAY_SCRIPT) == 1


@pytest.mark.asyncio
async def test_preflight_hook_alone_completes_capture(store):
    driver = FakeDriver(events=[
        (0.01, NEXT_URL, player_body("PT-PREFLIGHT", "V-PREFLIGHT")),
        (0.05, PLAYER_URL, player_body("PT-PLAYER", "V-PLAYER")),
    ])
    # O primeiro evento já completa a captura pelo hook pré-voo
    session = await make_capture(store, driver).capture("abc123", timeout_budget=1.0)
    assert session.proof_token == "PT-PREFLIGHT"


@pytest.mark.asyncio
async def test_capture_state_primary_overrides_secondary():
    state = CaptureState()
    state.record("PT-A", "", primary=False, source="pré-voo")
    state.record("PT-B", "", primary=False, source="pré-voo")
    assert state.snapshot() == ("PT-A", "")

    state.record("PT-C", "V1", primary=True, source="/player")
    assert state.snapshot() == ("PT-C", "V1")
    assert await state.complete.wait(0.1)


@pytest.mark.asyncio
async def test_visitor_fallback_does_not_override_captured_value():
    state = CaptureState()
    state.record("", "V-NET", primary=True, source="/player")
    state.set_visitor_fallback("V-PAGE")
    assert state.snapshot() == ("", "V-NET")
    assert not state.complete.is_set()


@pytest.mark.asyncio
async def test_each_capture_uses_a_fresh_driver(store):
    drivers = []

    def factory():
        driver = FakeDriver(events=[(0.01, PLAYER_URL, player_body("PT-1", "V1"))])
        drivers.append(driver)
        return driver

    capture = TokenCapture(store, driver_factory=factory, poll_interval=0.02)
    await asyncio.gather(capture.capture("abc123", 1.0), capture.capture("def456", 1.0))

    assert capture.calls == 2
    assert len(drivers) == 2
    assert all(d.closed for d in drivers)


class PlayTriggeredDriver(SlowLoadDriver):
    """Página lenta que só chama /player depois que a reprodução é acionada."""

    async def evaluate(self, script, arg=None):
        if script == youtube.DISMISS_AND_PLAY_SCRIPT:
            request = InterceptedRequest(
                url=PLAYER_URL, method="POST", post_data=player_body("PT-PLAY", "V1")
            )
            self._tasks.append(asyncio.ensure_future(self._dispatch(0.01, request)))
        return await super().evaluate(script, arg)


@pytest.mark.asyncio
async def test_slow_page_does_not_block_play_escalation(store):
    driver = PlayTriggeredDriver()
    capture = make_capture(store, driver)

    session = await capture.capture("abc123", timeout_budget=1.0)

    assert session.proof_token == "PT-PLAY"
    assert session.visitor_id == "V1"
    assert driver.navigate_timeouts[0] <= 0.32 + 0.01
    assert driver.evaluate_count(youtube.DISMISS_AND_PLAY_SCRIPT) == 1
    assert driver.navigations == [youtube.watch_url("abc123")]
