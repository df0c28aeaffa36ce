"""
streamfinder
============
Captura de credenciais via navegador, resolução de manifestos de stream e
detecção genérica de URLs de manifesto.
"""

from streamfinder.core.manifest import (
    ClientIdentity,
    Manifest,
    ManifestResolver,
    PlayabilityResult,
    PlayabilityStatus,
    StreamFormat,
)
from streamfinder.core.session_store import DegradedSession, Session, SessionStore
from streamfinder.core.sniffer import SniffResult, StreamSniffer
from streamfinder.core.token_capture import TokenCapture

__version__ = "0.1.0"

__all__ = [
    "ClientIdentity",
    "Manifest",
    "ManifestResolver",
    "PlayabilityResult",
    "PlayabilityStatus",
    "StreamFormat",
    "Session",
    "DegradedSession",
    "SessionStore",
    "SniffResult",
    "StreamSniffer",
    "TokenCapture",
]
