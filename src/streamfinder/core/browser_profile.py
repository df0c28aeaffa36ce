"""
browser_profile.py
==================
Perfil isolado do navegador usado nas capturas.

Diferente de reutilizar o perfil pessoal do usuário, o streamfinder mantém um
diretório de dados próprio e persistente (``<config dir>/browser``): os
cookies e o armazenamento local sobrevivem entre execuções, o que mantém uma
impressão digital estável perante a plataforma alvo.

O Chromium não permite dois processos no mesmo diretório de dados. Quando o
perfil persistente já está em uso por outra captura, é criado um perfil
temporário descartável para que cada chamada continue dona do seu navegador.

Navegadores suportados: Chromium (embutido no Playwright), Chrome, Edge.
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from filelock import FileLock, Timeout

from streamfinder.core import config

logger = logging.getLogger(__name__)

DEFAULT_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--mute-audio",
    "--lang=en-US",
]

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

# Mapeamento para os canais suportados pelo Playwright
CHANNELS: Dict[str, Optional[str]] = {
    "chromium": None,   # Usa o Chromium embutido do Playwright
    "chrome": "chrome",
    "edge": "msedge",
}


# ---------------------------------------------------------------------------
# Detecção de executáveis por sistema operacional
# ---------------------------------------------------------------------------

_EXECUTABLES: Dict[str, Dict[str, List[str]]] = {
    "chrome": {
        "windows": [
            r"%PROGRAMFILES%\Google\Chrome\Application\chrome.exe",
            r"%PROGRAMFILES(X86)%\Google\Chrome\Application\chrome.exe",
            r"%LOCALAPPDATA%\Google\Chrome\Application\chrome.exe",
        ],
        "linux": ["/usr/bin/google-chrome", "/usr/bin/google-chrome-stable"],
        "macos": ["/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"],
    },
    "edge": {
        "windows": [
            r"%PROGRAMFILES(X86)%\Microsoft\Edge\Application\msedge.exe",
            r"%PROGRAMFILES%\Microsoft\Edge\Application\msedge.exe",
        ],
        "linux": ["/usr/bin/microsoft-edge", "/usr/bin/microsoft-edge-stable"],
        "macos": ["/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge"],
    },
    "chromium": {
        "windows": [r"%LOCALAPPDATA%\Chromium\Application\chrome.exe"],
        "linux": ["/usr/bin/chromium", "/usr/bin/chromium-browser", "/snap/bin/chromium"],
        "macos": ["/Applications/Chromium.app/Contents/MacOS/Chromium"],
    },
}


def _find_executable(candidates: List[str]) -> Optional[str]:
    """Retorna o primeiro executável encontrado na lista de caminhos candidatos."""
    for path in candidates:
        expanded = os.path.expandvars(os.path.expanduser(path))
        if os.path.isfile(expanded):
            return expanded
    for name in candidates:
        found = shutil.which(name)
        if found:
            return found
    return None


def find_browser_executable(browser: str) -> Optional[str]:
    """Localiza o executável de um navegador no sistema operacional atual."""
    candidates = _EXECUTABLES.get(browser, {}).get(config._get_os(), [])
    return _find_executable(candidates)


def detect_available_browsers() -> Dict[str, Optional[str]]:
    """Retorna ``{nome_navegador: caminho_executável_ou_None}``."""
    return {b: find_browser_executable(b) for b in CHANNELS}


# ---------------------------------------------------------------------------
# Perfil isolado
# ---------------------------------------------------------------------------

@dataclass
class BrowserProfile:
    """Configuração de lançamento de um navegador isolado."""
    browser: str = "chromium"
    user_data_dir: str = ""
    headless: bool = True
    args: List[str] = field(default_factory=lambda: list(DEFAULT_ARGS))
    proxy: Optional[Dict[str, str]] = None
    ephemeral: bool = False
    _lock: Optional[FileLock] = field(default=None, repr=False, compare=False)

    @property
    def channel(self) -> Optional[str]:
        return CHANNELS.get(self.browser)

    def release(self) -> None:
        """Libera o lock do perfil persistente ou apaga o perfil temporário."""
        if self._lock is not None:
            self._lock.release()
            self._lock = None
        if self.ephemeral and self.user_data_dir:
            shutil.rmtree(self.user_data_dir, ignore_errors=True)


def acquire_profile(
    browser: str = "chromium",
    headless: bool = True,
    user_data_dir: Optional[str] = None,
) -> BrowserProfile:
    """
    Reserva o perfil persistente para uma captura.

    Parâmetros
    ----------
    browser : str
        "chromium" (padrão), "chrome" ou "edge".
    headless : bool
        Se True (padrão), o navegador roda sem interface gráfica.
    user_data_dir : str, opcional
        Diretório de dados persistente. Padrão: ``<config dir>/browser``.

    Retorna
    -------
    BrowserProfile
        Perfil persistente travado, ou um perfil temporário se o persistente
        estiver ocupado. Chame ``release()`` ao fechar o navegador.
    """
    browser = browser.lower()
    if browser not in CHANNELS:
        raise ValueError(f"Navegador não suportado: {browser}")

    data_dir = Path(user_data_dir) if user_data_dir else config.browser_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    proxy = config.proxy_settings()
    if proxy:
        logger.info("[*] Usando proxy: %s", proxy["server"])

    lock = FileLock(str(data_dir) + ".lock", timeout=0)
    try:
        lock.acquire()
    except Timeout:
        tmp_dir = tempfile.mkdtemp(prefix="streamfinder-browser-")
        logger.info("[*] Perfil persistente em uso; usando perfil temporário %s", tmp_dir)
        return BrowserProfile(
            browser=browser, user_data_dir=tmp_dir, headless=headless,
            proxy=proxy, ephemeral=True,
        )

    return BrowserProfile(
        browser=browser, user_data_dir=str(data_dir), headless=headless,
        proxy=proxy, _lock=lock,
    )


def build_playwright_launch_kwargs(profile: BrowserProfile) -> Dict[str, Any]:
    """
    Constrói os kwargs de ``chromium.launch_persistent_context`` para o perfil.

    Retorna
    -------
    dict com as chaves aceitas pelo Playwright: ``user_data_dir``,
    ``headless``, ``args``, ``viewport``, ``locale`` e, quando aplicáveis,
    ``channel`` e ``proxy``.
    """
    kwargs: Dict[str, Any] = {
        "user_data_dir": profile.user_data_dir,
        "headless": profile.headless,
        "args": list(profile.args),
        "viewport": dict(DEFAULT_VIEWPORT),
        "locale": "en-US",
    }
    if profile.channel:
        kwargs["channel"] = profile.channel
    if profile.proxy:
        kwargs["proxy"] = dict(profile.proxy)
    return kwargs
