"""
Fixtures compartilhadas: driver falso que reproduz eventos de rede
pré-gravados e um SessionStore em diretório temporário.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from streamfinder.core.driver import BrowserDriver, InterceptedRequest, call_handler, url_matches
from streamfinder.core.session_store import SessionStore


def player_body(proof_token: str = "", visitor_id: str = "", video_id: str = "abc123") -> str:
    """Corpo JSON de uma chamada /player como o navegador enviaria."""
    body: Dict[str, Any] = {
        "context": {"client": {"clientName": "WEB", "visitorData": visitor_id}},
        "videoId": video_id,
    }
    if proof_token:
        body["serviceIntegrityDimensions"] = {"poToken": proof_token}
    return json.dumps(body)


class FakeDriver(BrowserDriver):
    """
    Driver em memória para testes.

    ``events`` são tuplas ``(atraso, url, post_data)`` despachadas aos hooks
    cujo padrão casa, a partir da primeira navegação. ``navigate_events``
    associa um trecho de URL a eventos disparados quando essa URL é visitada.
    ``evaluations`` mapeia o script para o valor retornado (ou um callable
    que recebe o argumento).
    """

    def __init__(
        self,
        events: Optional[List[tuple]] = None,
        navigate_events: Optional[Dict[str, List[tuple]]] = None,
        evaluations: Optional[Dict[str, Any]] = None,
        cookies: Optional[List[Dict[str, Any]]] = None,
        launch_error: Optional[Exception] = None,
        navigate_error: Optional[Exception] = None,
    ):
        self.events = list(events or [])
        self.navigate_events = dict(navigate_events or {})
        self.evaluations = dict(evaluations or {})
        self._cookies = list(cookies or [])
        self.launch_error = launch_error
        self.navigate_error = navigate_error

        self.hooks: List[tuple] = []
        self.navigations: List[str] = []
        self.evaluated: List[str] = []
        self.launched = False
        self.closed = False
        self.close_calls = 0
        self._tasks: List[asyncio.Task] = []

    async def launch(self) -> None:
        if self.launch_error is not None:
            raise self.launch_error
        self.launched = True

    async def navigate(self, url: str, timeout: float) -> None:
        first = not self.navigations
        self.navigations.append(url)
        scheduled = list(self.events) if first else []
        for fragment, events in self.navigate_events.items():
            if fragment in url:
                scheduled.extend(events)
        for delay, event_url, post_data in scheduled:
            request = InterceptedRequest(
                url=event_url, method="POST" if post_data else "GET", post_data=post_data
            )
            self._tasks.append(asyncio.ensure_future(self._dispatch(delay, request)))
        if self.navigate_error is not None:
            raise self.navigate_error

    async def _dispatch(self, delay: float, request: InterceptedRequest) -> None:
        await asyncio.sleep(delay)
        for pattern, handler, _preflight in list(self.hooks):
            if url_matches(pattern, request.url):
                await call_handler(handler, request)

    async def intercept_requests(self, pattern, handler, preflight=False) -> None:
        self.hooks.append((pattern, handler, preflight))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        value = self.evaluations.get(script)
        if callable(value):
            return value(arg)
        return value

    def evaluate_count(self, script: str) -> int:
        return self.evaluated.count(script)

    async def cookies(self) -> List[Dict[str, Any]]:
        return list(self._cookies)

    async def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self.hooks.clear()


class SlowLoadDriver(FakeDriver):
    """
    Página que nunca termina de carregar: ``navigate`` dispara os eventos e
    então consome todo o ``timeout`` recebido (mais ``overrun``) antes de
    falhar, como o ``goto`` do Playwright.
    """

    def __init__(self, *args, overrun: float = 0.0, **kwargs):
        super().__init__(*args, **kwargs)
        self.overrun = overrun
        self.navigate_timeouts: List[float] = []

    async def navigate(self, url: str, timeout: float) -> None:
        self.navigate_timeouts.append(timeout)
        await super().navigate(url, timeout)
        await asyncio.sleep(timeout + self.overrun)
        raise TimeoutError(f"Timeout {timeout * 1000:.0f}ms exceeded navigating to {url}")


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "youtube_session.json")


@pytest.fixture(autouse=True)
def isolated_config_dir(tmp_path, monkeypatch):
    """Nenhum teste toca o diretório de configuração real do usuário."""
    monkeypatch.setenv("STREAMFINDER_CONFIG_DIR", str(tmp_path / "config"))
