"""
signals.py
==========
Sinal de conclusão de disparo único, seguro contra fechamento duplo.

Os hooks de interceptação podem disparar concorrentemente (evento de rede e
rota pré-voo para a mesma requisição). Em vez de um booleano solto, o sinal
usa uma máquina de estados explícita::

    OPEN --fire()--> CLOSING --(evento setado)--> CLOSED

Apenas a primeira chamada a ``fire()`` faz a transição; as demais retornam
False sem efeito.
"""

import asyncio
import threading
from enum import Enum
from typing import Optional


class SignalState(Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class OneShotSignal:
    """
    Sinal assíncrono que só pode ser disparado uma vez.

    ``fire()`` pode ser chamado de qualquer callback (inclusive fora do event
    loop, via ``loop.call_soon_threadsafe``); ``wait()`` sempre recebe um
    limite de tempo.
    """

    def __init__(self) -> None:
        self._state = SignalState.OPEN
        self._lock = threading.Lock()
        self._event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def state(self) -> SignalState:
        return self._state

    def is_set(self) -> bool:
        return self._state is not SignalState.OPEN

    def fire(self) -> bool:
        """Dispara o sinal. Retorna True apenas para a chamada que o fechou."""
        with self._lock:
            if self._state is not SignalState.OPEN:
                return False
            self._state = SignalState.CLOSING

        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if loop is not None and running is not loop:
            loop.call_soon_threadsafe(self._close)
        else:
            self._close()
        return True

    def _close(self) -> None:
        self._event.set()
        with self._lock:
            self._state = SignalState.CLOSED

    async def wait(self, timeout: float) -> bool:
        """Aguarda o disparo por até ``timeout`` segundos. Retorna se disparou."""
        if self._state is SignalState.CLOSED:
            return True
        if timeout <= 0:
            return self.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return self.is_set()
        return True
