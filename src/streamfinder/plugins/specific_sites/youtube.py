"""
youtube.py
==========
Plugin do YouTube: tudo o que depende da página do player fica aqui.

- URLs da página de exibição e da página de embed (gatilho alternativo).
- Padrões de URL da API privada (Innertube) para os hooks de captura.
- Extração do proof token (``serviceIntegrityDimensions.poToken``) e do
  visitor id (``context.client.visitorData``) do corpo das requisições.
- Escalonamento de interação: fechar overlays e forçar a reprodução (mudo).
- Leitura dos parâmetros dinâmicos do cliente a partir do ``ytcfg`` da
  página. Esses valores mudam no servidor e nunca devem ser fixados no
  código; ``extract_client_context`` é o único ponto que conhece os nomes
  das variáveis globais e, portanto, o primeiro a quebrar quando o site mudar.
"""

import json
import logging
import re
import urllib.parse
from dataclasses import dataclass
from typing import Optional, Tuple

from streamfinder.core.driver import BrowserDriver
from streamfinder.plugins.generic.base import BasePlugin

logger = logging.getLogger(__name__)

HOST = "www.youtube.com"
ORIGIN = "https://www.youtube.com"

PLAYER_API_URL = ORIGIN + "/youtubei/v1/player?prettyPrint=false"

# Hook principal: corpo da chamada /player. Hook pré-voo: qualquer chamada da API.
PLAYER_API_PATTERN = "**/youtubei/v1/player*"
PREFLIGHT_API_PATTERN = "**/youtubei/v1/*"

_VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/|"
    r"youtube\.com/v/|youtube\.com/shorts/|youtube\.com/live/)([a-zA-Z0-9_-]{11})"
)
_BARE_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")


# ---------------------------------------------------------------------------
# Scripts injetados
# ---------------------------------------------------------------------------

DISMISS_AND_PLAY_SCRIPT = """() => {
    const dismissBtns = document.querySelectorAll(
        'button[aria-label*="Dismiss"], .ytp-ad-skip-button, .ytp-skip-ad-button, ' +
        'paper-button[aria-label*="No thanks"], button[aria-label*="Reject all"]'
    );
    dismissBtns.forEach(btn => btn.click());

    const playBtn = document.querySelector('button.ytp-large-play-button, button.ytp-play-button');
    if (playBtn) playBtn.click();

    const video = document.querySelector('video');
    if (video) {
        video.muted = true;
        video.play().catch(() => {});
    }
    return !!video;
}"""

EMBED_PLAY_SCRIPT = """() => {
    const playBtn = document.querySelector('button.ytp-large-play-button');
    if (playBtn) playBtn.click();
    const video = document.querySelector('video');
    if (video) {
        video.muted = true;
        video.play().catch(() => {});
    }
    return !!video;
}"""

VISITOR_DATA_SCRIPT = """() => {
    try {
        return (window.ytcfg && ytcfg.get('VISITOR_DATA')) ||
               window.ytInitialPlayerResponse?.responseContext?.visitorData ||
               '';
    } catch (e) {
        return '';
    }
}"""

CLIENT_CONTEXT_SCRIPT = """() => {
    try {
        return {
            clientVersion: ytcfg.get('INNERTUBE_CLIENT_VERSION') || '',
            sts: ytcfg.get('STS') || 0,
            userAgent: navigator.userAgent || ''
        };
    } catch (e) {
        return { clientVersion: '', sts: 0, userAgent: navigator.userAgent || '' };
    }
}"""


# ---------------------------------------------------------------------------
# URLs e identificadores
# ---------------------------------------------------------------------------

def watch_url(video_id: str) -> str:
    return f"{ORIGIN}/watch?v={video_id}"


def embed_url(video_id: str) -> str:
    return f"{ORIGIN}/embed/{video_id}?autoplay=1"


def extract_video_id(value: str) -> Optional[str]:
    """Aceita um ID puro ou qualquer URL de vídeo do YouTube."""
    value = value.strip()
    if _BARE_ID_RE.match(value):
        return value
    match = _VIDEO_ID_RE.search(value)
    if match:
        return match.group(1)
    parsed = urllib.parse.urlparse(value)
    v = urllib.parse.parse_qs(parsed.query).get("v")
    if v and _BARE_ID_RE.match(v[0]):
        return v[0]
    return None


def parse_credentials(post_data: Optional[str]) -> Tuple[str, str]:
    """
    Extrai ``(proof_token, visitor_id)`` do corpo JSON de uma chamada da API.
    Campos ausentes voltam como string vazia.
    """
    if not post_data:
        return "", ""
    try:
        body = json.loads(post_data)
    except ValueError:
        return "", ""
    if not isinstance(body, dict):
        return "", ""

    proof_token = ""
    sid = body.get("serviceIntegrityDimensions")
    if isinstance(sid, dict) and isinstance(sid.get("poToken"), str):
        proof_token = sid["poToken"]

    visitor_id = ""
    client = (body.get("context") or {}).get("client") if isinstance(body.get("context"), dict) else None
    if isinstance(client, dict) and isinstance(client.get("visitorData"), str):
        visitor_id = client["visitorData"]

    return proof_token, visitor_id


# ---------------------------------------------------------------------------
# Contexto dinâmico do cliente
# ---------------------------------------------------------------------------

@dataclass
class ClientContext:
    client_version: str = ""
    signature_timestamp: int = 0
    user_agent: str = ""


async def extract_client_context(driver: BrowserDriver) -> ClientContext:
    """Lê a versão ativa do cliente, o STS e o user agent do ``ytcfg`` da página."""
    try:
        raw = await driver.evaluate(CLIENT_CONTEXT_SCRIPT)
    except Exception as e:
        logger.warning("[!] Não foi possível ler o contexto do cliente: %s", e)
        return ClientContext()

    raw = raw or {}
    try:
        sts = int(raw.get("sts") or 0)
    except (TypeError, ValueError):
        sts = 0
    context = ClientContext(
        client_version=str(raw.get("clientVersion") or ""),
        signature_timestamp=sts,
        user_agent=str(raw.get("userAgent") or ""),
    )
    if context.client_version:
        logger.info("[*] Versão do cliente: %s", context.client_version)
    if context.signature_timestamp:
        logger.info("[*] Timestamp de assinatura: %d", context.signature_timestamp)
    return context


async def read_visitor_id(driver: BrowserDriver) -> str:
    """Último recurso: visitor id a partir da configuração da página."""
    try:
        value = await driver.evaluate(VISITOR_DATA_SCRIPT)
    except Exception as e:
        logger.debug("Leitura do VISITOR_DATA falhou: %s", e)
        return ""
    return value if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Plugin
# ---------------------------------------------------------------------------

class YouTubePlugin(BasePlugin):
    """
    Sequência de interações para provocar a emissão das credenciais:

    1. ``interact``: fecha overlays/anúncios e força a reprodução (mudo).
    2. ``interact_embed``: na página de embed, clica no play e força a
       reprodução; usado como gatilho alternativo.
    """

    @property
    def name(self) -> str:
        return "YouTube"

    @property
    def domain_pattern(self) -> str:
        return r"(^|\.|//)(youtube\.com|youtu\.be)"

    async def interact(self, driver: BrowserDriver) -> None:
        has_video = await driver.evaluate(DISMISS_AND_PLAY_SCRIPT)
        logger.debug("Overlays fechados, reprodução acionada (video: %s)", has_video)

    async def interact_embed(self, driver: BrowserDriver) -> None:
        has_video = await driver.evaluate(EMBED_PLAY_SCRIPT)
        logger.debug("Reprodução no embed acionada (video: %s)", has_video)
