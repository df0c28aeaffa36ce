"""
errors.py
=========
Hierarquia de exceções do streamfinder.

Toda exceção carrega o estágio em que a falha ocorreu e o tempo decorrido
(em segundos) desde o início da operação, para facilitar o diagnóstico.
``str(erro)`` sempre produz uma única linha legível.

Observação: ``DegradedSession`` (apenas o visitor id capturado) NÃO é um
erro; ver ``streamfinder.core.session_store``.
"""

from typing import Optional


class StreamFinderError(Exception):
    """Erro base do streamfinder."""

    def __init__(self, message: str, stage: str = "unknown", elapsed: Optional[float] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.elapsed = elapsed

    def __str__(self) -> str:
        if self.elapsed is None:
            return f"[{self.stage}] {self.message}"
        return f"[{self.stage}] {self.message} (após {self.elapsed:.1f}s)"


class LaunchError(StreamFinderError):
    """O processo do navegador não pôde ser iniciado. Fatal, sem nova tentativa."""


class CaptureTimeout(StreamFinderError):
    """Nenhuma credencial utilizável foi capturada dentro do orçamento de tempo."""


class SignatureRejected(StreamFinderError):
    """A API de manifesto rejeitou a assinatura/autorização da requisição."""

    def __init__(self, message: str, stage: str = "manifest", elapsed: Optional[float] = None,
                 status: Optional[str] = None):
        super().__init__(message, stage, elapsed)
        self.status = status


class ContentUnavailable(StreamFinderError):
    """O recurso não é reproduzível (removido, privado, offline...). Permanente."""

    def __init__(self, message: str, stage: str = "manifest", elapsed: Optional[float] = None,
                 status: Optional[str] = None):
        super().__init__(message, stage, elapsed)
        self.status = status


class ManifestError(StreamFinderError):
    """Falha de transporte ou de parsing ao chamar a API de manifesto."""


class SniffUnsupported(StreamFinderError):
    """Nenhuma estratégia de detecção encontrou um stream com a extensão pedida."""

    def __init__(self, extension: str, stage: str = "sniff", elapsed: Optional[float] = None):
        super().__init__(
            f"site não suportado (nenhum stream {extension} encontrado)", stage, elapsed
        )
        self.extension = extension
