import logging
from abc import ABC, abstractmethod

from streamfinder.core.driver import BrowserDriver

logger = logging.getLogger(__name__)

# Seletores de play comuns aos players mais usados
PLAY_SELECTORS = [
    'button[aria-label="Play"]',
    '.vjs-big-play-button',
    '.play-button',
    '.jw-display-icon-container',
    '.plyr__control--overlaid',
    '.play-icon',
]

# Clica no primeiro botão de play visível e força a reprodução (mudo) do <video>
TRIGGER_PLAYBACK_SCRIPT = """(selectors) => {
    for (const sel of selectors) {
        const el = document.querySelector(sel);
        if (el && el.offsetParent !== null) { el.click(); break; }
    }
    const video = document.querySelector('video');
    if (video) {
        video.muted = true;
        video.play().catch(() => {});
    }
    return !!video;
}"""


class BasePlugin(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        """Nome do plugin"""

    @property
    @abstractmethod
    def domain_pattern(self) -> str:
        """Regex para casar o domínio"""

    @abstractmethod
    async def interact(self, driver: BrowserDriver) -> None:
        """Ações para provocar o carregamento do stream (ex: clicar no play)"""


class GenericPlugin(BasePlugin):
    @property
    def name(self) -> str:
        return "Generic Extractor"

    @property
    def domain_pattern(self) -> str:
        return r".*"

    async def interact(self, driver: BrowserDriver) -> None:
        has_video = await driver.evaluate(TRIGGER_PLAYBACK_SCRIPT, PLAY_SELECTORS)
        logger.debug("Reprodução acionada (video presente: %s)", has_video)
