"""
manifest.py
===========
Resolução do manifesto de streams via API privada do player.

A requisição embute o visitor id, o proof token (se houver), o timestamp de
assinatura dinâmico e uma identidade de cliente coerente com a usada na
captura; identidades divergentes invalidam a assinatura no servidor.

A resposta traz um ``playabilityStatus`` e, quando OK, dois conjuntos
paralelos de formatos (combinados áudio+vídeo e adaptativos separados), que
são unificados em uma lista de ``StreamFormat`` na ordem recebida.

Política de nova tentativa: rejeição de assinatura/autorização provoca
exatamente UMA recaptura forçada (ignorando o cache) e uma nova chamada;
qualquer outro status diferente de OK é falha permanente.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from streamfinder.core import config
from streamfinder.core.errors import ContentUnavailable, ManifestError, SignatureRejected
from streamfinder.core.log import redact
from streamfinder.core.session_store import Session, SessionStore, build_cookie_header
from streamfinder.core.token_capture import DEFAULT_BUDGET, TokenCapture
from streamfinder.plugins.specific_sites import youtube

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0
DEFAULT_STS = 20073

WEB_CLIENT_VERSION = "2.20250312.04.00"
WEB_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
IOS_CLIENT_VERSION = "20.11.6"
IOS_USER_AGENT = "com.google.ios.youtube/20.11.6 (iPhone16,2; U; CPU iOS 18_1_0 like Mac OS X;)"

# Trechos do motivo que indicam problema de autorização/assinatura
AUTH_FAILURE_HINTS = ("not a bot", "sign in", "potoken", "po token", "signature", "unauthorized")


# ---------------------------------------------------------------------------
# Estruturas de dados
# ---------------------------------------------------------------------------

class PlayabilityStatus(Enum):
    OK = "OK"
    ERROR = "ERROR"
    LOGIN_REQUIRED = "LOGIN_REQUIRED"
    UNPLAYABLE = "UNPLAYABLE"
    LIVE_STREAM_OFFLINE = "LIVE_STREAM_OFFLINE"
    AGE_CHECK_REQUIRED = "AGE_CHECK_REQUIRED"
    CONTENT_CHECK_REQUIRED = "CONTENT_CHECK_REQUIRED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PlayabilityStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class PlayabilityResult:
    status: PlayabilityStatus
    reason: str = ""

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "PlayabilityResult":
        raw = data.get("playabilityStatus") or {}
        return cls(PlayabilityStatus.parse(raw.get("status")), raw.get("reason") or "")

    @property
    def ok(self) -> bool:
        return self.status is PlayabilityStatus.OK

    @property
    def is_auth_failure(self) -> bool:
        """Falha de autorização/assinatura (elegível para uma recaptura)."""
        if self.status is PlayabilityStatus.LOGIN_REQUIRED:
            return True
        if self.status in (PlayabilityStatus.ERROR, PlayabilityStatus.UNPLAYABLE):
            reason = self.reason.lower()
            return any(hint in reason for hint in AUTH_FAILURE_HINTS)
        return False


@dataclass
class StreamFormat:
    """Uma variante de stream baixável diretamente."""
    url: str
    itag: int = 0
    mime_type: str = ""
    container: str = ""
    bitrate: int = 0
    width: int = 0
    height: int = 0
    quality: str = ""
    content_length: Optional[int] = None
    audio_url: Optional[str] = None
    source: str = "combined"   # "hls" | "combined" | "adaptive"
    headers: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}" if self.width and self.height else ""

    @property
    def is_audio_only(self) -> bool:
        return self.mime_type.startswith("audio/")


@dataclass
class Manifest:
    resource_id: str
    formats: List[StreamFormat]
    playability: PlayabilityResult
    title: str = ""
    author: str = ""
    duration: int = 0
    thumbnail: str = ""
    degraded: bool = False
    headers: Dict[str, str] = field(default_factory=dict, repr=False)


@dataclass
class ClientIdentity:
    """Campos de identidade do cliente embutidos na requisição."""
    client_name: str
    client_name_id: str
    client_version: str
    user_agent: str
    extra: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def web(cls, session: Session) -> "ClientIdentity":
        """Mesma identidade do navegador que gerou o proof token."""
        return cls(
            client_name="WEB",
            client_name_id="1",
            client_version=session.client_version or WEB_CLIENT_VERSION,
            user_agent=session.user_agent or WEB_USER_AGENT,
        )

    @classmethod
    def ios(cls, session: Session) -> "ClientIdentity":
        return cls(
            client_name="IOS",
            client_name_id="5",
            client_version=IOS_CLIENT_VERSION,
            user_agent=IOS_USER_AGENT,
            extra={
                "deviceMake": "Apple",
                "deviceModel": "iPhone16,2",
                "osName": "iOS",
                "osVersion": "18.1.0.22B83",
            },
        )

    @classmethod
    def for_name(cls, name: str, session: Session) -> "ClientIdentity":
        factories = {"web": cls.web, "ios": cls.ios}
        if name not in factories:
            raise ValueError(f"Cliente desconhecido: {name}")
        return factories[name](session)


@dataclass
class ManifestRequest:
    url: str
    headers: Dict[str, str]
    payload: Dict[str, Any] = field(repr=False)


# ---------------------------------------------------------------------------
# Construção da requisição e parsing da resposta
# ---------------------------------------------------------------------------

def build_request(resource_id: str, session: Session, identity: ClientIdentity) -> ManifestRequest:
    """Monta a requisição assinada a partir da sessão."""
    client: Dict[str, Any] = {
        "clientName": identity.client_name,
        "clientVersion": identity.client_version,
        "userAgent": identity.user_agent,
        "hl": "en",
        "gl": "US",
        "visitorData": session.visitor_id,
    }
    client.update(identity.extra)

    payload: Dict[str, Any] = {
        "context": {"client": client},
        "videoId": resource_id,
        "playbackContext": {
            "contentPlaybackContext": {
                "signatureTimestamp": session.signature_timestamp or DEFAULT_STS,
            },
        },
        "contentCheckOk": True,
        "racyCheckOk": True,
    }
    if session.proof_token:
        payload["serviceIntegrityDimensions"] = {"poToken": session.proof_token}

    headers = {
        "Content-Type": "application/json",
        "User-Agent": identity.user_agent,
        "X-Youtube-Client-Name": identity.client_name_id,
        "X-Youtube-Client-Version": identity.client_version,
        "Origin": youtube.ORIGIN,
        "X-Goog-Visitor-Id": session.visitor_id,
    }
    cookie_header = build_cookie_header(session.cookies, youtube.HOST)
    if cookie_header:
        headers["Cookie"] = cookie_header

    return ManifestRequest(url=youtube.PLAYER_API_URL, headers=headers, payload=payload)


def transfer_headers(session: Session, identity: ClientIdentity) -> Dict[str, str]:
    """Cabeçalhos que a camada de download deve enviar literalmente."""
    headers = {
        "User-Agent": identity.user_agent,
        "Referer": youtube.ORIGIN + "/",
        "Origin": youtube.ORIGIN,
    }
    if session.visitor_id:
        headers["X-Goog-Visitor-Id"] = session.visitor_id
    cookie_header = build_cookie_header(session.cookies, youtube.HOST)
    if cookie_header:
        headers["Cookie"] = cookie_header
    return headers


def _container(mime_type: str) -> str:
    """``video/webm; codecs="vp9"`` -> ``webm``."""
    base = mime_type.split(";", 1)[0].strip()
    return base.split("/", 1)[1] if "/" in base else ""


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_format(raw: Dict[str, Any], source: str, headers: Dict[str, str]) -> StreamFormat:
    mime_type = raw.get("mimeType") or ""
    height = _to_int(raw.get("height")) or 0
    quality = raw.get("qualityLabel") or (f"{height}p" if height else raw.get("quality") or "")
    return StreamFormat(
        url=raw["url"],
        itag=_to_int(raw.get("itag")) or 0,
        mime_type=mime_type,
        container=_container(mime_type),
        bitrate=_to_int(raw.get("bitrate")) or 0,
        width=_to_int(raw.get("width")) or 0,
        height=height,
        quality=quality,
        content_length=_to_int(raw.get("contentLength")),
        source=source,
        headers=dict(headers),
    )


def parse_formats(data: Dict[str, Any], headers: Dict[str, str]) -> List[StreamFormat]:
    """
    Unifica o HLS (se houver), o conjunto combinado e o adaptativo, nessa
    ordem e preservando a ordem do servidor dentro de cada conjunto.
    Variantes sem URL direta (protegidas por ``signatureCipher``) são omitidas.
    """
    streaming = data.get("streamingData") or {}
    formats: List[StreamFormat] = []

    hls_url = streaming.get("hlsManifestUrl")
    if hls_url:
        formats.append(StreamFormat(
            url=hls_url, container="m3u8", quality="auto (HLS)", source="hls",
            mime_type="application/x-mpegURL", headers=dict(headers),
        ))

    skipped = 0
    for pool, source in (("formats", "combined"), ("adaptiveFormats", "adaptive")):
        for raw in streaming.get(pool) or []:
            if not raw.get("url"):
                skipped += 1
                continue
            formats.append(_parse_format(raw, source, headers))
    if skipped:
        logger.debug("%d variantes ignoradas (exigem decifragem de assinatura).", skipped)

    _pair_audio(formats)
    return formats


def _pair_audio(formats: List[StreamFormat]) -> None:
    """Associa a melhor faixa de áudio do mesmo container a cada vídeo adaptativo."""
    best: Dict[str, StreamFormat] = {}
    for f in formats:
        if f.source == "adaptive" and f.is_audio_only:
            current = best.get(f.container)
            if current is None or f.bitrate > current.bitrate:
                best[f.container] = f
    for f in formats:
        if f.source == "adaptive" and f.mime_type.startswith("video/") and f.container in best:
            f.audio_url = best[f.container].url


def parse_manifest(resource_id: str, data: Dict[str, Any], headers: Dict[str, str],
                   degraded: bool = False) -> Manifest:
    """Converte a resposta da API em ``Manifest``; levanta para status não OK."""
    playability = PlayabilityResult.from_response(data)
    if not playability.ok:
        message = f"{playability.status.value}: {playability.reason or 'sem motivo informado'}"
        if playability.is_auth_failure:
            raise SignatureRejected(message, status=playability.status.value)
        raise ContentUnavailable(message, status=playability.status.value)

    formats = parse_formats(data, headers)
    if not formats:
        raise ContentUnavailable(
            "nenhum formato baixável encontrado (todos podem exigir decifragem)",
            status=playability.status.value,
        )

    details = data.get("videoDetails") or {}
    thumbnails = (details.get("thumbnail") or {}).get("thumbnails") or []
    return Manifest(
        resource_id=details.get("videoId") or resource_id,
        formats=formats,
        playability=playability,
        title=details.get("title") or "",
        author=details.get("author") or "",
        duration=_to_int(details.get("lengthSeconds")) or 0,
        thumbnail=thumbnails[-1].get("url", "") if thumbnails else "",
        degraded=degraded,
        headers=dict(headers),
    )


# ---------------------------------------------------------------------------
# Classe principal: ManifestResolver
# ---------------------------------------------------------------------------

class ManifestResolver:
    """
    Resolve o manifesto de um recurso usando uma sessão capturada.

    Parâmetros
    ----------
    store : SessionStore
        Cache de sessão (lido quando ``resolve`` não recebe sessão).
    capture : TokenCapture
        Usado quando não há sessão utilizável e na recaptura forçada.
    client : str
        Identidade de cliente: "web" (padrão, mesma do navegador) ou "ios".
    capture_budget : float
        Orçamento em segundos de cada captura.
    debug_dump : bool
        Se True, grava a resposta bruta em ``<config dir>/youtube_debug_response.json``.
    transport : httpx.AsyncBaseTransport, opcional
        Transporte HTTP alternativo (testes).
    """

    def __init__(
        self,
        store: SessionStore,
        capture: TokenCapture,
        client: str = "web",
        capture_budget: float = DEFAULT_BUDGET,
        request_timeout: float = REQUEST_TIMEOUT,
        debug_dump: bool = False,
        debug_path: Optional[Union[str, Path]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.capture = capture
        self.client = client
        self.capture_budget = capture_budget
        self.request_timeout = request_timeout
        self.debug_dump = debug_dump
        self.debug_path = Path(debug_path) if debug_path else config.debug_response_path()
        self.transport = transport

    async def get_session(self, resource_id: str) -> Session:
        """Sessão do cache ou, se ausente/expirada, de uma nova captura."""
        result = self.store.load()
        if result.usable:
            return result.session
        if result.expired:
            logger.info("[*] Sessão expirada; recapturando.")
        else:
            logger.info("[*] Nenhuma sessão em cache; capturando.")
        return await self.capture.capture(resource_id, self.capture_budget)

    async def resolve(self, resource_id: str, session: Optional[Session] = None) -> Manifest:
        loop = asyncio.get_running_loop()
        start = loop.time()
        if session is None:
            session = await self.get_session(resource_id)

        try:
            return await self._resolve_once(resource_id, session)
        except SignatureRejected as e:
            logger.warning("[!] Assinatura rejeitada (%s); recapturando uma única vez.", e.message)

        self.store.invalidate()
        session = await self.capture.capture(resource_id, self.capture_budget)
        try:
            return await self._resolve_once(resource_id, session)
        except SignatureRejected as e:
            e.elapsed = loop.time() - start
            e.message = f"rejeitada novamente após recaptura: {e.message}"
            raise

    async def _resolve_once(self, resource_id: str, session: Session) -> Manifest:
        loop = asyncio.get_running_loop()
        start = loop.time()
        if session.is_degraded:
            logger.warning("[!] Sessão sem proof token; tentando a API mesmo assim.")

        identity = ClientIdentity.for_name(self.client, session)
        request = build_request(resource_id, session, identity)
        logger.debug(
            "POST %s (cliente %s %s, visitor id %s, proof token %s)",
            request.url, identity.client_name, identity.client_version,
            redact(session.visitor_id), redact(session.proof_token),
        )

        try:
            async with httpx.AsyncClient(timeout=self.request_timeout, transport=self.transport) as client:
                response = await client.post(request.url, headers=request.headers, json=request.payload)
        except httpx.HTTPError as e:
            raise ManifestError(
                f"falha na requisição à API: {e}", stage="manifest", elapsed=loop.time() - start
            ) from e

        if self.debug_dump:
            self._dump(response.content)

        if response.status_code in (401, 403):
            raise SignatureRejected(
                f"API retornou status {response.status_code}",
                elapsed=loop.time() - start, status=str(response.status_code),
            )
        if response.status_code != 200:
            raise ManifestError(
                f"API retornou status {response.status_code}",
                stage="manifest", elapsed=loop.time() - start,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ManifestError(
                "resposta da API não é JSON válido", stage="manifest", elapsed=loop.time() - start
            ) from e

        try:
            manifest = parse_manifest(
                resource_id, data, transfer_headers(session, identity), degraded=session.is_degraded
            )
        except (SignatureRejected, ContentUnavailable) as e:
            e.elapsed = loop.time() - start
            raise

        logger.info("[*] %d formatos encontrados para %s.", len(manifest.formats), resource_id)
        return manifest

    def _dump(self, body: bytes) -> None:
        """Grava a resposta bruta para diagnóstico offline (nunca relida)."""
        self.debug_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(str(self.debug_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(body)
        logger.info("[*] Debug: resposta da API salva em %s", self.debug_path)
