"""
token_capture.py
================
Captura das credenciais de prova de origem dirigindo um navegador real.

Algoritmo:
1. Inicia um navegador isolado (headless por padrão, perfil persistente).
2. Arma dois hooks ANTES da navegação, aguardando ambos ficarem ativos:
   (a) evento de rede da chamada /player, de onde saem o proof token e o
       visitor id do corpo da requisição;
   (b) rota pré-voo sobre toda a API, ponto secundário para os mesmos campos.
3. Navega para a página do vídeo.
4. Aguarda o sinal de conclusão em intervalos curtos, escalando:
   primeiro fecha overlays e força a reprodução; depois tenta a página de
   embed como gatilho alternativo.
5. Esgotado o orçamento sem visitor id, lê o valor da configuração da página.
6. Lê a versão do cliente e o timestamp de assinatura da página.
7. Copia os cookies do domínio alvo.
8. Persiste via SessionStore e retorna a sessão.

Falhas: erro ao iniciar o navegador -> ``LaunchError``; nenhum dado ->
``CaptureTimeout``; apenas o visitor id -> ``DegradedSession`` (não é erro).
"""

import asyncio
import logging
import threading
from typing import Callable, Optional, Tuple

from streamfinder.core.driver import BrowserDriver, InterceptedRequest, PlaywrightDriver
from streamfinder.core.errors import CaptureTimeout, LaunchError
from streamfinder.core.log import redact
from streamfinder.core.session_store import Cookie, Session, SessionStore, filter_cookies
from streamfinder.core.signals import OneShotSignal
from streamfinder.plugins.specific_sites import youtube
from streamfinder.plugins.specific_sites.youtube import YouTubePlugin

logger = logging.getLogger(__name__)

DEFAULT_BUDGET = 25.0
POLL_INTERVAL = 0.5
PLAY_AFTER = 0.32        # fração do orçamento antes de forçar a reprodução
EMBED_AFTER = 0.6        # fração do orçamento antes de tentar o embed
FINALIZE_GRACE = 5.0     # leitura da página e cookies após o orçamento


class CaptureState:
    """Campos capturados pelos hooks, protegidos por lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.proof_token = ""
        self.visitor_id = ""
        self.complete = OneShotSignal()

    def record(self, proof_token: str, visitor_id: str, primary: bool, source: str) -> None:
        """
        Registra campos vindos de um hook. O hook primário sobrescreve; o
        secundário apenas preenche campos ainda vazios.
        """
        with self._lock:
            if proof_token and (primary or not self.proof_token):
                if proof_token != self.proof_token:
                    logger.info("[*] Proof token capturado via %s: %s", source, redact(proof_token))
                self.proof_token = proof_token
            if visitor_id and (primary or not self.visitor_id):
                if visitor_id != self.visitor_id:
                    logger.info("[*] Visitor id capturado via %s: %s", source, redact(visitor_id))
                self.visitor_id = visitor_id
            done = bool(self.proof_token and self.visitor_id)
        if done:
            self.complete.fire()

    def set_visitor_fallback(self, visitor_id: str) -> None:
        with self._lock:
            if not self.visitor_id:
                self.visitor_id = visitor_id

    def snapshot(self) -> Tuple[str, str]:
        with self._lock:
            return self.proof_token, self.visitor_id


class TokenCapture:
    """
    Captura de sessão via navegador.

    Parâmetros
    ----------
    store : SessionStore
        Onde a sessão capturada é persistida.
    driver_factory : callable, opcional
        Fábrica de ``BrowserDriver``; cada captura usa um driver novo.
        Padrão: ``PlaywrightDriver`` headless.
    plugin : YouTubePlugin, opcional
        Interações e leitura da página.
    """

    def __init__(
        self,
        store: SessionStore,
        driver_factory: Optional[Callable[[], BrowserDriver]] = None,
        plugin: Optional[YouTubePlugin] = None,
        poll_interval: float = POLL_INTERVAL,
        play_after: float = PLAY_AFTER,
        embed_after: float = EMBED_AFTER,
        finalize_grace: float = FINALIZE_GRACE,
    ):
        self.store = store
        self.driver_factory = driver_factory or PlaywrightDriver
        self.plugin = plugin or YouTubePlugin()
        self.poll_interval = poll_interval
        self.play_after = play_after
        self.embed_after = embed_after
        self.finalize_grace = finalize_grace
        self.calls = 0

    async def capture(self, resource_id: str, timeout_budget: float = DEFAULT_BUDGET) -> Session:
        """Executa uma captura completa. Sempre fecha o navegador ao sair."""
        self.calls += 1
        loop = asyncio.get_running_loop()
        start = loop.time()
        driver = self.driver_factory()
        state = CaptureState()

        logger.info("[*] Iniciando navegador para captura de tokens...")
        try:
            # LaunchError propaga sem nova tentativa
            try:
                await driver.launch()
            except LaunchError as e:
                e.elapsed = loop.time() - start
                raise
            return await asyncio.wait_for(
                self._run(driver, state, resource_id, start, timeout_budget),
                timeout_budget + self.finalize_grace,
            )
        except asyncio.TimeoutError:
            proof_token, visitor_id = state.snapshot()
            raise CaptureTimeout(
                "nenhuma credencial utilizável capturada"
                if not visitor_id else "captura excedeu o tempo ao finalizar",
                stage="capture", elapsed=loop.time() - start,
            ) from None
        finally:
            await driver.close()

    async def _run(
        self,
        driver: BrowserDriver,
        state: CaptureState,
        resource_id: str,
        start: float,
        budget: float,
    ) -> Session:
        loop = asyncio.get_running_loop()
        deadline = start + budget

        def on_player(request: InterceptedRequest) -> None:
            proof_token, visitor_id = youtube.parse_credentials(request.post_data)
            state.record(proof_token, visitor_id, primary=True, source="/player")

        def on_preflight(request: InterceptedRequest) -> None:
            proof_token, visitor_id = youtube.parse_credentials(request.post_data)
            state.record(proof_token, visitor_id, primary=False, source="pré-voo")

        # Barreira de prontidão: ambos os hooks ativos antes de navegar
        await asyncio.gather(
            driver.intercept_requests(youtube.PLAYER_API_PATTERN, on_player),
            driver.intercept_requests(youtube.PREFLIGHT_API_PATTERN, on_preflight, preflight=True),
        )

        # O carregamento não pode consumir o tempo das etapas de escalonamento
        play_at = start + budget * self.play_after
        try:
            await driver.navigate(youtube.watch_url(resource_id), timeout=max(play_at - loop.time(), 0.1))
        except Exception as e:
            # Os hooks podem já ter capturado algo; o laço decide o resultado
            logger.warning("[!] Navegação para a página do vídeo falhou: %s", e)

        tried_play = False
        tried_embed = False
        while True:
            proof_token, visitor_id = state.snapshot()
            if proof_token and visitor_id:
                logger.info("[✓] Captura de tokens concluída!")
                break

            now = loop.time()
            if now >= deadline:
                break
            elapsed = now - start

            if not tried_play and now >= play_at:
                tried_play = True
                logger.info("[*] Tentando acionar a reprodução...")
                await self._bounded(self.plugin.interact(driver), deadline, "reprodução")

            if not tried_embed and not proof_token and elapsed >= budget * self.embed_after:
                tried_embed = True
                logger.info("[*] Tentando a página de embed...")
                await self._bounded(self._try_embed(driver, resource_id, deadline), deadline, "embed")

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await state.complete.wait(min(self.poll_interval, remaining))

        proof_token, visitor_id = state.snapshot()
        if not visitor_id:
            visitor_id = await youtube.read_visitor_id(driver)
            if visitor_id:
                state.set_visitor_fallback(visitor_id)
                logger.info("[*] Visitor id obtido da configuração da página: %s", redact(visitor_id))

        if not visitor_id:
            raise CaptureTimeout(
                "nenhuma credencial utilizável capturada",
                stage="capture", elapsed=loop.time() - start,
            )

        context = await youtube.extract_client_context(driver)
        cookies = filter_cookies(
            (Cookie.from_browser(c) for c in await driver.cookies()), youtube.HOST
        )

        session = Session.create(
            visitor_id=visitor_id,
            proof_token=proof_token,
            cookies=cookies,
            client_version=context.client_version,
            signature_timestamp=context.signature_timestamp,
            user_agent=context.user_agent,
        )
        self.store.save(session)

        if session.is_degraded:
            logger.warning("[!] Nenhum proof token capturado; seguindo apenas com o visitor id.")
        else:
            logger.info(
                "[*] Sessão pronta: proof token %s, visitor id %s",
                redact(proof_token), redact(visitor_id),
            )
        return session

    async def _try_embed(self, driver: BrowserDriver, resource_id: str, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        await driver.navigate(youtube.embed_url(resource_id), timeout=max(deadline - loop.time(), 0.1))
        await self.plugin.interact_embed(driver)

    async def _bounded(self, coro, deadline: float, label: str) -> None:
        """Executa uma etapa de escalonamento sem ultrapassar o prazo."""
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            coro.close()
            return
        try:
            await asyncio.wait_for(coro, remaining)
        except asyncio.TimeoutError:
            logger.debug("Etapa '%s' excedeu o prazo.", label)
        except Exception as e:
            logger.debug("Etapa '%s' falhou: %s", label, e)
