"""
Testes para o módulo streamfinder.core.session_store.
"""

import json
import os
import stat
import sys
import threading

import pytest

from streamfinder.core.session_store import (
    SESSION_TTL,
    Cookie,
    DegradedSession,
    Session,
    SessionStore,
    build_cookie_header,
    filter_cookies,
)


def make_session(**overrides) -> Session:
    data = dict(
        visitor_id="V1",
        proof_token="PT-123",
        cookies=[Cookie("PREF", "f6=400", ".youtube.com")],
        client_version="2.20250101.00.00",
        signature_timestamp=20100,
        captured_at=1_000_000.0,
        user_agent="Mozilla/5.0",
    )
    data.update(overrides)
    return Session.create(**data)


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------

def test_cookie_matches_host_and_parent_domain():
    cookie = Cookie("SID", "x", ".youtube.com")
    assert cookie.matches_host("www.youtube.com")
    assert cookie.matches_host("youtube.com")
    assert not cookie.matches_host("notyoutube.com")
    assert not cookie.matches_host("google.com")


def test_filter_cookies_keeps_only_target_domain():
    cookies = [
        Cookie("SID", "1", ".youtube.com"),
        Cookie("NID", "2", ".google.com"),
        Cookie("VISITOR", "3", "www.youtube.com"),
    ]
    kept = filter_cookies(cookies, "www.youtube.com")
    assert [c.name for c in kept] == ["SID", "VISITOR"]


def test_build_cookie_header():
    cookies = [Cookie("A", "1", ".youtube.com"), Cookie("B", "2", ".google.com")]
    assert build_cookie_header(cookies, "www.youtube.com") == "A=1"
    assert build_cookie_header(cookies) == "A=1; B=2"


def test_cookie_from_browser_session_cookie():
    cookie = Cookie.from_browser({
        "name": "YSC", "value": "v", "domain": ".youtube.com", "path": "/",
        "expires": -1, "httpOnly": True, "secure": True,
    })
    assert cookie.expires is None
    assert cookie.http_only is True
    assert cookie.secure is True


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

def test_create_without_proof_token_is_degraded():
    session = Session.create(visitor_id="V1")
    assert isinstance(session, DegradedSession)
    assert session.is_degraded
    assert session.is_valid


def test_create_with_proof_token_is_full_session():
    session = make_session()
    assert not isinstance(session, DegradedSession)
    assert not session.is_degraded


def test_repr_hides_secrets():
    text = repr(make_session())
    assert "PT-123" not in text
    assert "V1" not in text
    assert "f6=400" not in text


def test_is_expired():
    session = make_session(captured_at=0.0)
    assert not session.is_expired(ttl=60, now=59)
    assert session.is_expired(ttl=60, now=61)


# ---------------------------------------------------------------------------
# SessionStore
# ---------------------------------------------------------------------------

def test_load_missing_file_is_not_found(store):
    result = store.load()
    assert result.session is None
    assert result.found is False
    assert result.expired is False
    assert not result.usable


def test_save_and_load_round_trip(tmp_path):
    store = SessionStore(tmp_path / "s.json", clock=lambda: 1_000_100.0)
    session = make_session()
    store.save(session)

    result = store.load()
    assert result.usable
    assert result.session == session
    assert result.session.proof_token == "PT-123"
    assert result.session.cookies[0].value == "f6=400"


def test_degraded_session_round_trip(tmp_path):
    store = SessionStore(tmp_path / "s.json", clock=lambda: 1_000_100.0)
    store.save(make_session(proof_token=""))
    result = store.load()
    assert isinstance(result.session, DegradedSession)
    data = json.loads((tmp_path / "s.json").read_text())
    assert data["proofToken"] is None


def test_load_expired_is_distinct_from_not_found(tmp_path):
    now = 1_000_000.0 + SESSION_TTL + 1
    store = SessionStore(tmp_path / "s.json", clock=lambda: now)
    store.save(make_session())

    result = store.load()
    assert result.session is None
    assert result.found is True
    assert result.expired is True
    assert not result.usable


@pytest.mark.skipif(sys.platform.startswith("win"), reason="permissões POSIX")
def test_save_restricts_permissions(store):
    store.save(make_session())
    mode = stat.S_IMODE(os.stat(store.path).st_mode)
    assert mode == 0o600


def test_save_leaves_no_temp_files(store):
    store.save(make_session())
    store.save(make_session(visitor_id="V2"))
    leftovers = [p.name for p in store.path.parent.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


def test_concurrent_writers_never_expose_partial_file(tmp_path):
    path = tmp_path / "s.json"
    clock = lambda: 1_000_100.0
    sessions = [make_session(visitor_id=f"V{i}", proof_token="PT-" + "x" * 2000 + str(i))
                for i in range(4)]
    SessionStore(path, clock=clock).save(sessions[0])

    errors = []
    stop = threading.Event()

    def writer(session):
        store = SessionStore(path, clock=clock)
        for _ in range(25):
            store.save(session)

    def reader():
        store = SessionStore(path, clock=clock)
        while not stop.is_set():
            result = store.load()
            if not result.found or result.session not in sessions:
                errors.append(result)

    reading = threading.Thread(target=reader)
    reading.start()
    writers = [threading.Thread(target=writer, args=(s,)) for s in sessions]
    for t in writers:
        t.start()
    for t in writers:
        t.join()
    stop.set()
    reading.join()

    assert errors == []
    assert SessionStore(path, clock=clock).load().session in sessions
    assert [p.name for p in tmp_path.iterdir() if p.suffix == ".tmp"] == []


def test_invalidate_removes_file(store):
    store.save(make_session())
    store.invalidate()
    assert not store.path.exists()
    assert store.load().found is False
    # Idempotente
    store.invalidate()


def test_corrupt_file_counts_as_not_found(store):
    store.path.write_text("{not json")
    result = store.load()
    assert result.session is None
    assert result.found is False


def test_file_without_visitor_id_counts_as_not_found(store):
    store.path.write_text(json.dumps({"proofToken": "x", "capturedAt": 1.0}))
    assert store.load().found is False


def test_default_path_uses_config_dir(tmp_path):
    store = SessionStore()
    assert store.path == tmp_path / "config" / "youtube_session.json"
