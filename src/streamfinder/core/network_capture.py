"""
network_capture.py
==================
Classificação e filtragem de URLs de mídia vistas durante a navegação.

Usado pela primeira estratégia do StreamSniffer (interceptação passiva) e
reaproveitado pelas demais estratégias para descartar rastreadores e
publicidade.

Funcionalidades:
- Filtragem de URLs de rastreamento, analytics e publicidade (blacklist).
- Extração de URLs embutidas em parâmetros de redirecionamento.
- Deduplicação por URL normalizada, preservando a URL original assinada
  (os parâmetros de query costumam carregar o token de acesso).
- Priorização de playlists principais (master, index, playlist).
- Disparo de um sinal único na primeira URL compatível.
"""

import threading
import urllib.parse
from dataclasses import dataclass
from typing import List, Optional, Set

from streamfinder.core.driver import InterceptedRequest
from streamfinder.core.signals import OneShotSignal


# ---------------------------------------------------------------------------
# Constantes de filtragem
# ---------------------------------------------------------------------------

# URLs que contenham qualquer um desses termos são descartadas.
BLACKLIST_KEYWORDS: List[str] = [
    # Analytics e rastreamento
    "youbora", "chartbeat", "analytics", "telemetry", "metrics", "heartbeat",
    "omtrdc", "hotjar", "scorecardresearch", "segment.io", "mixpanel",
    "amplitude", "newrelic", "datadog", "sentry.io", "bugsnag",
    # Publicidade
    "doubleclick", "googleads", "amazon-adsystem", "adnxs", "advertising",
    "moatads", "fwmrm.net", "pubmatic", "rubiconproject", "springserve",
    "imasdk.googleapis.com",
    # Logs e diagnóstico
    "/log/", "beacon",
]

PRIORITY_KEYWORDS: List[str] = [
    "master", "index", "playlist", "manifest", "live", "stream", "hls", "dash",
]

# Parâmetros de query string que podem conter a URL real do stream embutida.
REDIRECT_PARAMS: List[str] = [
    "ep.URL", "url", "link", "target", "redir", "redirect", "src",
]


def normalize_extension(extension: str) -> str:
    """``"m3u8"`` -> ``".m3u8"`` (minúsculo, com ponto)."""
    ext = extension.strip().lower()
    return ext if ext.startswith(".") else "." + ext


# ---------------------------------------------------------------------------
# Estrutura de resultado
# ---------------------------------------------------------------------------

@dataclass
class CapturedStream:
    """Uma URL de stream capturada e classificada."""
    url: str
    format: str        # "hls" | "dash" | "progressive" | "unknown"
    is_priority: bool
    raw_url: str       # URL da requisição, antes de extrair URL embutida


# ---------------------------------------------------------------------------
# Funções de filtragem
# ---------------------------------------------------------------------------

def _detect_format(url: str) -> str:
    url_lower = url.lower()
    if ".m3u8" in url_lower:
        return "hls"
    if ".mpd" in url_lower:
        return "dash"
    if any(ext in url_lower for ext in (".mp4", ".webm", ".flv", ".ts")):
        return "progressive"
    return "unknown"


def is_blacklisted(url: str) -> bool:
    url_lower = url.lower()
    return any(keyword in url_lower for keyword in BLACKLIST_KEYWORDS)


def matches_extension(url: str, extension: str) -> bool:
    """True se a URL contiver a extensão (URIs ``data:`` nunca casam)."""
    url_lower = url.lower()
    if url_lower.startswith("data:"):
        return False
    return normalize_extension(extension) in url_lower


def _is_priority(url: str) -> bool:
    url_lower = url.lower()
    return any(kw in url_lower for kw in PRIORITY_KEYWORDS)


def normalize_stream_url(url: str) -> str:
    """Esquema + domínio + caminho; usado apenas como chave de deduplicação."""
    parsed = urllib.parse.urlparse(url)
    return urllib.parse.urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", ""))


def extract_embedded_url(url: str, extension: str) -> Optional[str]:
    """
    Retorna a URL de stream embutida nos parâmetros de query (ex.: URLs de
    redirecionamento de analytics), ou None.
    """
    parsed = urllib.parse.urlparse(url)
    params = urllib.parse.parse_qs(parsed.query)
    for param in REDIRECT_PARAMS:
        if param in params:
            candidate = params[param][0]
            if candidate.lower().startswith(("http://", "https://")) and matches_extension(candidate, extension):
                return candidate
    return None


def pick_candidate(urls: List[str], extension: str) -> Optional[str]:
    """Primeira URL compatível e fora da blacklist de uma lista."""
    for url in urls:
        if not url:
            continue
        embedded = extract_embedded_url(url, extension)
        candidate = embedded or url
        if matches_extension(candidate, extension) and not is_blacklisted(candidate):
            return candidate
    return None


# ---------------------------------------------------------------------------
# Classe principal: NetworkCapture
# ---------------------------------------------------------------------------

class NetworkCapture:
    """
    Coletor de URLs de mídia alimentado pelo hook de interceptação.

    Uso típico
    ----------
    >>> capture = NetworkCapture(".m3u8")
    >>> await driver.intercept_requests("**/*", capture.handle_request)
    >>> await capture.found.wait(timeout=5)
    >>> capture.get_best_url()
    """

    def __init__(self, extension: str, deduplicate: bool = True):
        self.extension = normalize_extension(extension)
        self.deduplicate = deduplicate
        self.found = OneShotSignal()
        self._streams: List[CapturedStream] = []
        self._seen_urls: Set[str] = set()
        self._lock = threading.Lock()

    def handle_request(self, request: InterceptedRequest) -> None:
        """Callback registrado no driver."""
        self.process_url(request.url)

    def process_url(self, raw_url: str) -> bool:
        """Processa uma URL bruta. Retorna True se ela foi aceita."""
        embedded = extract_embedded_url(raw_url, self.extension)
        url = embedded or raw_url

        if not matches_extension(url, self.extension) or is_blacklisted(url):
            return False

        key = normalize_stream_url(url)
        stream = CapturedStream(
            url=url,
            format=_detect_format(url),
            is_priority=_is_priority(url),
            raw_url=raw_url,
        )
        with self._lock:
            if self.deduplicate and key in self._seen_urls:
                return False
            self._seen_urls.add(key)
            if stream.is_priority:
                self._streams.insert(0, stream)
            else:
                self._streams.append(stream)

        self.found.fire()
        return True

    def get_streams(self) -> List[CapturedStream]:
        with self._lock:
            return list(self._streams)

    def get_urls(self) -> List[str]:
        return [s.url for s in self.get_streams()]

    def get_best_url(self) -> Optional[str]:
        """
        Melhor URL disponível:
        1. primeira prioritária com "playlist" no nome;
        2. primeira prioritária (master/index/...);
        3. primeira capturada.
        """
        streams = self.get_streams()
        if not streams:
            return None
        for s in streams:
            if s.is_priority and "playlist" in s.url.lower():
                return s.url
        for s in streams:
            if s.is_priority:
                return s.url
        return streams[0].url

    def has_streams(self) -> bool:
        return bool(self.get_streams())

    def __len__(self) -> int:
        return len(self.get_streams())

    def __repr__(self) -> str:
        return f"NetworkCapture(extension={self.extension!r}, streams={len(self)})"
