"""
log.py
======
Configuração de logging do streamfinder.

A biblioteca apenas cria loggers por módulo (``logging.getLogger(__name__)``);
quem configura a saída é a CLI, via ``setup_logging``, usando o RichHandler
para manter o mesmo console do restante da interface.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "streamfinder"


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """Instala um RichHandler no logger raiz do pacote (idempotente)."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console,
        show_path=verbose,
        show_time=verbose,
        markup=False,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def redact(value: Optional[str]) -> str:
    """Representação segura de um segredo para logs: apenas o tamanho."""
    if not value:
        return "<vazio>"
    return f"<{len(value)} chars>"
