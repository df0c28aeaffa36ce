"""
driver.py
=========
Abstração estreita do navegador usada pela captura de tokens e pelo sniffer.

A lógica de captura conversa apenas com ``BrowserDriver`` (``launch``,
``navigate``, ``intercept_requests``, ``evaluate``, ``cookies``, ``close``),
o que permite testá-la contra um driver falso que reproduz eventos de rede
pré-gravados: o comportamento anti-automação real não é determinístico.

``PlaywrightDriver`` é a implementação real, sobre um contexto persistente do
Playwright.
"""

import asyncio
import fnmatch
import inspect
import logging
import os
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Request, Route, async_playwright

from streamfinder.core.browser_profile import (
    BrowserProfile,
    acquire_profile,
    build_playwright_launch_kwargs,
)
from streamfinder.core.errors import LaunchError

logger = logging.getLogger(__name__)

CLOSE_GRACE = 5.0
SETTLE_TIMEOUT = 5.0

# Mascara a propriedade navigator.webdriver
STEALTH_INIT_SCRIPT = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined})"


@dataclass
class InterceptedRequest:
    """Visão mínima de uma requisição interceptada, independente do driver."""
    url: str
    method: str = "GET"
    post_data: Optional[str] = None
    resource_type: str = ""


RequestHandler = Callable[[InterceptedRequest], Union[None, Awaitable[None]]]


def url_matches(pattern: str, url: str) -> bool:
    """Casamento de URL no estilo glob (``**/youtubei/v1/player*``)."""
    if pattern in ("*", "**", "**/*"):
        return True
    return fnmatch.fnmatchcase(url, pattern.replace("**", "*"))


async def call_handler(handler: RequestHandler, request: InterceptedRequest) -> None:
    result = handler(request)
    if inspect.isawaitable(result):
        await result


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class BrowserDriver(ABC):
    """Interface mínima de um navegador controlado por automação."""

    @abstractmethod
    async def launch(self) -> None:
        """Inicia o navegador. Deve levantar ``LaunchError`` em caso de falha."""

    @abstractmethod
    async def navigate(self, url: str, timeout: float) -> None:
        """Navega até ``url`` e espera o DOM estabilizar (``timeout`` em segundos)."""

    @abstractmethod
    async def intercept_requests(
        self, pattern: str, handler: RequestHandler, preflight: bool = False
    ) -> None:
        """
        Registra um hook para requisições cujo URL casa com ``pattern``.

        ``preflight=False`` observa passivamente o evento de rede;
        ``preflight=True`` intercepta a requisição antes do envio (nível de
        rota) e sempre a deixa continuar. O retorno só acontece quando o hook
        já está ativo, servindo de barreira de prontidão.
        """

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Executa JavaScript na página e retorna o resultado serializado."""

    @abstractmethod
    async def cookies(self) -> List[Dict[str, Any]]:
        """Cookies do contexto, no formato do Playwright."""

    @abstractmethod
    async def close(self) -> None:
        """Fecha a página e encerra o processo do navegador. Idempotente."""

    async def __aenter__(self) -> "BrowserDriver":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


# ---------------------------------------------------------------------------
# Implementação Playwright
# ---------------------------------------------------------------------------

class PlaywrightDriver(BrowserDriver):
    """
    Driver real baseado em ``launch_persistent_context`` do Playwright.

    Parâmetros
    ----------
    browser : str
        "chromium" (padrão), "chrome" ou "edge".
    headless : bool
        Se True (padrão), o navegador roda sem interface gráfica.
    user_data_dir : str, opcional
        Diretório de dados persistente (padrão: ``<config dir>/browser``).
    """

    def __init__(self, browser: str = "chromium", headless: bool = True,
                 user_data_dir: Optional[str] = None):
        self.browser_name = browser
        self.headless = headless
        self.user_data_dir = user_data_dir
        self._playwright = None
        self._context = None
        self._page: Optional[Page] = None
        self._profile: Optional[BrowserProfile] = None
        self._listeners: List[Callable[[Request], Any]] = []
        self._closed = False

    async def launch(self) -> None:
        try:
            self._profile = acquire_profile(self.browser_name, self.headless, self.user_data_dir)
        except OSError as e:
            raise LaunchError(f"perfil do navegador indisponível: {e}", stage="launch") from e
        try:
            self._playwright = await async_playwright().start()
            kwargs = build_playwright_launch_kwargs(self._profile)
            self._context = await self._playwright.chromium.launch_persistent_context(**kwargs)
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
            await self._page.add_init_script(STEALTH_INIT_SCRIPT)
        except PlaywrightError as e:
            await self._shutdown()
            raise LaunchError(f"falha ao iniciar o navegador: {e}", stage="launch") from e
        logger.info("[*] Navegador iniciado (%s, headless=%s).", self.browser_name, self.headless)

    def _require_page(self) -> Page:
        if self._page is None or self._closed:
            raise RuntimeError("Navegador não iniciado ou já fechado.")
        return self._page

    async def navigate(self, url: str, timeout: float) -> None:
        page = self._require_page()
        logger.info("[*] Navegando para: %s", url)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        await page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)

        # Espera o DOM estabilizar, sem passar do prazo da navegação
        settle = min(SETTLE_TIMEOUT, deadline - loop.time())
        if settle <= 0:
            return
        try:
            await page.wait_for_load_state("networkidle", timeout=settle * 1000)
        except PlaywrightError as e:
            # Páginas com requisições contínuas (anúncios, players) nunca ficam ociosas
            logger.debug("networkidle não alcançado em %s: %s", url, e)

    async def intercept_requests(
        self, pattern: str, handler: RequestHandler, preflight: bool = False
    ) -> None:
        page = self._require_page()

        if preflight:
            async def _on_route(route: Route) -> None:
                request = route.request
                try:
                    await call_handler(handler, _to_intercepted(request))
                finally:
                    try:
                        await route.continue_()
                    except PlaywrightError as e:
                        # Página fechada no meio da interceptação
                        logger.debug("continue_ falhou para %s: %s", request.url, e)

            await page.route(pattern, _on_route)
            return

        async def _on_request(request: Request) -> None:
            if url_matches(pattern, request.url):
                await call_handler(handler, _to_intercepted(request))

        page.on("request", _on_request)
        self._listeners.append(_on_request)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        page = self._require_page()
        if arg is None:
            return await page.evaluate(script)
        return await page.evaluate(script, arg)

    async def cookies(self) -> List[Dict[str, Any]]:
        if self._context is None:
            return []
        return list(await self._context.cookies())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._page is not None:
            for listener in self._listeners:
                self._page.remove_listener("request", listener)
            self._listeners.clear()
            try:
                await self._page.unroute_all(behavior="ignoreErrors")
            except PlaywrightError as e:
                logger.debug("unroute_all falhou: %s", e)
        await self._shutdown()

    async def _shutdown(self) -> None:
        try:
            if self._context is not None:
                try:
                    await asyncio.wait_for(self._context.close(), CLOSE_GRACE)
                except (asyncio.TimeoutError, PlaywrightError) as e:
                    logger.warning("[!] Fechamento do navegador não concluiu (%s); forçando.", e)
            if self._playwright is not None:
                # Encerra o processo do driver, levando o navegador junto
                await self._playwright.stop()
        finally:
            self._context = None
            self._page = None
            self._playwright = None
            if self._profile is not None:
                self._profile.release()
                self._profile = None


def _to_intercepted(request: Request) -> InterceptedRequest:
    return InterceptedRequest(
        url=request.url,
        method=request.method,
        post_data=request.post_data,
        resource_type=request.resource_type,
    )


# ---------------------------------------------------------------------------
# Instalação automática dos navegadores do Playwright
# ---------------------------------------------------------------------------

def ensure_playwright_browsers() -> bool:
    """
    Garante que o Chromium do Playwright esteja instalado.

    No Windows não tenta usar 'sudo' nem 'apt-get'. Retorna True se o
    navegador estiver disponível ao final.
    """
    is_windows = sys.platform.startswith("win")
    env = os.environ.copy()

    try:
        result = subprocess.run(
            [sys.executable, "-m", "playwright", "install", "chromium", "--dry-run"],
            capture_output=True, text=True,
        )
        if "browser is already installed" in result.stdout.lower():
            return True
    except OSError as e:
        logger.debug("Verificação do Playwright falhou: %s", e)

    logger.info("[*] Instalando o Chromium do Playwright (isso pode levar alguns minutos)...")
    cmd = [sys.executable, "-m", "playwright", "install", "chromium"]
    if not is_windows:
        cmd.append("--with-deps")
        env["DEBIAN_FRONTEND"] = "noninteractive"

    try:
        subprocess.run(cmd, check=True, env=env)
    except (subprocess.CalledProcessError, OSError) as e:
        logger.error("[!] Erro ao instalar o Chromium: %s", e)
        logger.error("[!] Tente manualmente: python -m playwright install chromium")
        return False
    logger.info("[✓] Chromium instalado com sucesso!")
    return True
