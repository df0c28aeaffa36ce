"""
sniffer.py
==========
Detecção genérica de URLs de manifesto (HLS/DASH/...) em páginas arbitrárias,
sem protocolo de token: irmão "sem credenciais" do TokenCapture.

Cadeia de estratégias, parando no primeiro sucesso:
1. ``network``: interceptação passiva durante o carregamento (maior confiança).
2. ``resource_timing``: entradas da Performance API após o carregamento
   (pega requisições feitas antes dos hooks ou por workers).
3. ``player``: introspecção dos players de vídeo conhecidos.
4. ``page_source``: regex sobre o HTML renderizado, ignorando URIs ``data:``.

Cada estratégia roda dentro de um sub-orçamento próprio; esgotadas todas sem
resultado, levanta ``SniffUnsupported`` com a extensão pedida.
"""

import asyncio
import html
import ipaddress
import logging
import re
import urllib.parse
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import validators

from streamfinder.core.driver import BrowserDriver, PlaywrightDriver
from streamfinder.core.errors import LaunchError, SniffUnsupported
from streamfinder.core.manifest import Manifest, PlayabilityResult, PlayabilityStatus, StreamFormat
from streamfinder.core.network_capture import (
    NetworkCapture,
    is_blacklisted,
    matches_extension,
    normalize_extension,
    pick_candidate,
)
from streamfinder.plugins.manager import PluginManager

logger = logging.getLogger(__name__)

DEFAULT_BUDGET = 20.0
NETWORK_SHARE = 0.55     # fração do orçamento para navegação + interceptação
FALLBACK_SHARE = 0.15    # fração de cada estratégia seguinte
TITLE_BUDGET = 1.0
TITLE_MARGIN = 0.05

STRATEGIES = ("network", "resource_timing", "player", "page_source")

RESOURCE_TIMING_SCRIPT = """() => performance.getEntriesByType('resource').map(r => r.name)"""

PLAYER_SOURCE_SCRIPT = """(ext) => {
    const match = (src) => typeof src === 'string' && src.toLowerCase().includes(ext) && !src.startsWith('data:');

    // video.js
    for (const el of document.querySelectorAll('.video-js')) {
        const p = el.player || (window.videojs && window.videojs.getPlayer && window.videojs.getPlayer(el));
        if (p && p.currentSrc) {
            const src = p.currentSrc();
            if (match(src)) return src;
        }
    }

    // <video> e <source>
    for (const video of document.querySelectorAll('video')) {
        if (match(video.currentSrc)) return video.currentSrc;
        if (match(video.src)) return video.src;
        for (const source of video.querySelectorAll('source')) {
            if (match(source.src)) return source.src;
        }
    }

    // hls.js
    if (window.hls && match(window.hls.url)) return window.hls.url;

    // JW Player
    try {
        if (window.jwplayer) {
            const item = window.jwplayer().getPlaylistItem();
            if (item && match(item.file)) return item.file;
        }
    } catch (e) {}

    // Variável global de player
    if (window.player && window.player.src) {
        const src = typeof window.player.src === 'function' ? window.player.src() : window.player.src;
        if (match(src)) return src;
    }
    return '';
}"""

PAGE_SOURCE_SCRIPT = """() => document.documentElement.outerHTML"""

TITLE_SCRIPT = """() => document.title"""

_PRIVATE_HOSTS = ("localhost", "localhost.localdomain")


# ---------------------------------------------------------------------------
# Validação de URL
# ---------------------------------------------------------------------------

def validate_page_url(url: str) -> bool:
    """Valida se a URL é segura e bem formatada (http/https, host público)."""
    if not validators.url(url):
        return False
    if not url.lower().startswith(("http://", "https://")):
        return False
    host = (urllib.parse.urlparse(url).hostname or "").lower()
    if not host or host in _PRIVATE_HOSTS:
        return False
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return True
    return not (ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_unspecified)


# ---------------------------------------------------------------------------
# Busca no código-fonte da página
# ---------------------------------------------------------------------------

def find_in_source(page_html: str, extension: str, base_url: str) -> Optional[str]:
    """
    Procura URLs literais de manifesto no HTML/JS renderizado.

    URLs escapadas em JSON (``\\/``) e entidades HTML são normalizadas;
    URLs relativas são resolvidas contra ``base_url``; URIs ``data:`` e
    rastreadores são descartados.
    """
    ext = re.escape(normalize_extension(extension))
    text = page_html.replace("\\/", "/")
    patterns = [
        rf"https?://[^\"'\s<>]+{ext}[^\"'\s<>]*",
        rf"(?:src|file|url|source)\s*[=:]\s*[\"']([^\"']*{ext}[^\"']*)[\"']",
        rf"[\"']([^\"']*{ext}[^\"']*)[\"']",
    ]
    for pattern in patterns:
        for match in re.finditer(pattern, text, re.IGNORECASE):
            candidate = (match.group(1) if match.groups() else match.group(0)).strip()
            candidate = html.unescape(candidate)
            if not candidate or candidate.lower().startswith("data:"):
                continue
            if not matches_extension(candidate, extension):
                continue
            absolute = urllib.parse.urljoin(base_url, candidate)
            if not absolute.lower().startswith(("http://", "https://")) or is_blacklisted(absolute):
                continue
            return absolute
    return None


# ---------------------------------------------------------------------------
# Resultado
# ---------------------------------------------------------------------------

@dataclass
class SniffResult:
    url: str
    strategy: str
    page_url: str
    title: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def to_manifest(self) -> Manifest:
        """Manifesto de um único formato, no mesmo contrato do resolvedor."""
        path = urllib.parse.urlparse(self.url).path
        resource_id = path.rsplit("/", 1)[-1].rsplit(".", 1)[0] or "video"
        container = path.rsplit(".", 1)[-1].lower() if "." in path else ""
        return Manifest(
            resource_id=resource_id,
            formats=[StreamFormat(
                url=self.url, container=container, quality="best",
                source=self.strategy, headers=dict(self.headers),
            )],
            playability=PlayabilityResult(PlayabilityStatus.OK),
            title=self.title,
            headers=dict(self.headers),
        )


def _origin_headers(page_url: str) -> Dict[str, str]:
    parsed = urllib.parse.urlparse(page_url)
    return {"Referer": page_url, "Origin": f"{parsed.scheme}://{parsed.netloc}"}


# ---------------------------------------------------------------------------
# Classe principal: StreamSniffer
# ---------------------------------------------------------------------------

class StreamSniffer:
    """
    Localizador de manifestos em páginas arbitrárias.

    Parâmetros
    ----------
    driver_factory : callable, opcional
        Fábrica de ``BrowserDriver`` (padrão: ``PlaywrightDriver`` headless).
    plugins : PluginManager, opcional
        Fornece a interação (clique no play) adequada a cada site.
    """

    def __init__(
        self,
        driver_factory: Optional[Callable[[], BrowserDriver]] = None,
        plugins: Optional[PluginManager] = None,
        network_share: float = NETWORK_SHARE,
        fallback_share: float = FALLBACK_SHARE,
    ):
        self.driver_factory = driver_factory or PlaywrightDriver
        self.plugins = plugins or PluginManager()
        self.network_share = network_share
        self.fallback_share = fallback_share

    async def sniff(
        self,
        page_url: str,
        target_extension: str = "m3u8",
        timeout_budget: float = DEFAULT_BUDGET,
    ) -> SniffResult:
        if not validate_page_url(page_url):
            raise ValueError(f"URL inválida ou insegura: {page_url}")

        ext = normalize_extension(target_extension)
        loop = asyncio.get_running_loop()
        start = loop.time()
        logger.info("[*] Detectando stream %s em %s", ext, page_url)

        driver = self.driver_factory()
        capture = NetworkCapture(ext)
        try:
            try:
                await driver.launch()
            except LaunchError as e:
                e.elapsed = loop.time() - start
                raise
            remaining = start + timeout_budget - loop.time()
            try:
                result = await asyncio.wait_for(
                    self._run(driver, capture, page_url, start, timeout_budget),
                    max(remaining, 0.01),
                )
            except asyncio.TimeoutError:
                # Um stream já visto pela rede não se perde com o orçamento
                url = capture.get_best_url()
                result = SniffResult(
                    url=url, strategy="network", page_url=page_url,
                    headers=_origin_headers(page_url),
                ) if url else None
        finally:
            await driver.close()

        if result is None:
            raise SniffUnsupported(ext, elapsed=loop.time() - start)
        logger.info("[✓] Encontrado via %s: %s", result.strategy, result.url)
        return result

    async def _run(
        self, driver: BrowserDriver, capture: NetworkCapture, page_url: str, start: float,
        budget: float,
    ) -> Optional[SniffResult]:
        loop = asyncio.get_running_loop()
        deadline = start + budget
        network_deadline = start + budget * self.network_share
        ext = capture.extension

        # 1. Interceptação passiva, armada antes da navegação; o carregamento
        # fica limitado ao sub-orçamento da rede
        await driver.intercept_requests("**/*", capture.handle_request)
        try:
            await driver.navigate(page_url, timeout=max(network_deadline - loop.time(), 0.1))
        except Exception as e:
            logger.warning("[!] Navegação falhou: %s", e)

        if not capture.has_streams():
            plugin = self.plugins.get_plugin_for_url(page_url)
            await self._step("interação", plugin.interact(driver), network_deadline)
            await capture.found.wait(max(network_deadline - loop.time(), 0))
        url = capture.get_best_url()
        if url:
            return await self._result(driver, url, "network", page_url, deadline)

        # 2-4. Estratégias de fallback, cada uma com sub-orçamento próprio
        fallbacks = [
            ("resource_timing", lambda: self._from_resource_timing(driver, ext)),
            ("player", lambda: self._from_player(driver, ext)),
            ("page_source", lambda: self._from_page_source(driver, ext, page_url)),
        ]
        for name, strategy in fallbacks:
            step_deadline = min(loop.time() + budget * self.fallback_share, deadline)
            url = await self._step(name, strategy(), step_deadline)
            if url:
                return await self._result(driver, url, name, page_url, deadline)
        return None

    async def _step(self, name: str, coro: Awaitable, deadline: float):
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            coro.close()
            logger.debug("Estratégia '%s' sem tempo restante.", name)
            return None
        try:
            return await asyncio.wait_for(coro, remaining)
        except asyncio.TimeoutError:
            logger.debug("Estratégia '%s' excedeu o sub-orçamento.", name)
        except Exception as e:
            logger.debug("Estratégia '%s' falhou: %s", name, e)
        return None

    async def _from_resource_timing(self, driver: BrowserDriver, ext: str) -> Optional[str]:
        names = await driver.evaluate(RESOURCE_TIMING_SCRIPT)
        return pick_candidate([n for n in names or [] if isinstance(n, str)], ext)

    async def _from_player(self, driver: BrowserDriver, ext: str) -> Optional[str]:
        src = await driver.evaluate(PLAYER_SOURCE_SCRIPT, ext)
        if isinstance(src, str) and src and not is_blacklisted(src):
            return src
        return None

    async def _from_page_source(self, driver: BrowserDriver, ext: str, page_url: str) -> Optional[str]:
        page_html = await driver.evaluate(PAGE_SOURCE_SCRIPT)
        if not isinstance(page_html, str):
            return None
        return find_in_source(page_html, ext, page_url)

    async def _result(
        self, driver: BrowserDriver, url: str, strategy: str, page_url: str, deadline: float
    ) -> SniffResult:
        # Margem para o título nunca derrubar um resultado já encontrado
        loop = asyncio.get_running_loop()
        title_deadline = min(loop.time() + TITLE_BUDGET, deadline - TITLE_MARGIN)
        title = await self._step("título", driver.evaluate(TITLE_SCRIPT), title_deadline)
        return SniffResult(
            url=url,
            strategy=strategy,
            page_url=page_url,
            title=title.strip() if isinstance(title, str) else "",
            headers=_origin_headers(page_url),
        )
