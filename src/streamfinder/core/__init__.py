"""
streamfinder.core
=================
Módulos principais do streamfinder.

- driver: abstração do navegador e implementação Playwright.
- browser_profile: perfil isolado e persistente do navegador.
- session_store: cache em disco da sessão capturada.
- signals: sinal de conclusão de disparo único.
- network_capture: classificação de URLs de mídia interceptadas.
- token_capture, manifest, sniffer: pipeline de captura e resolução
  (exportados em ``streamfinder``).
"""

from streamfinder.core.browser_profile import BrowserProfile, acquire_profile, detect_available_browsers
from streamfinder.core.driver import BrowserDriver, InterceptedRequest, PlaywrightDriver, ensure_playwright_browsers
from streamfinder.core.errors import (
    CaptureTimeout,
    ContentUnavailable,
    LaunchError,
    ManifestError,
    SignatureRejected,
    SniffUnsupported,
    StreamFinderError,
)
from streamfinder.core.network_capture import CapturedStream, NetworkCapture
from streamfinder.core.session_store import Cookie, DegradedSession, LoadResult, Session, SessionStore
from streamfinder.core.signals import OneShotSignal, SignalState

__all__ = [
    "BrowserProfile",
    "acquire_profile",
    "detect_available_browsers",
    "BrowserDriver",
    "InterceptedRequest",
    "PlaywrightDriver",
    "ensure_playwright_browsers",
    "StreamFinderError",
    "LaunchError",
    "CaptureTimeout",
    "SignatureRejected",
    "ContentUnavailable",
    "ManifestError",
    "SniffUnsupported",
    "NetworkCapture",
    "CapturedStream",
    "Cookie",
    "Session",
    "DegradedSession",
    "LoadResult",
    "SessionStore",
    "OneShotSignal",
    "SignalState",
]
