"""
session_store.py
================
Persistência e validação da sessão capturada pelo navegador.

A sessão contém o visitor id, o proof token (opcional), os cookies filtrados
e os parâmetros dinâmicos do cliente (versão e timestamp de assinatura).
O arquivo é gravado de forma atômica (arquivo temporário + ``os.replace``),
serializado por um ``FileLock`` entre processos concorrentes e com permissões
restritas ao dono, já que contém cookies e tokens.

Ciclo de vida:
- criada apenas pelo TokenCapture;
- persistida aqui;
- lida (somente leitura) pelo ManifestResolver;
- invalidada por expiração (TTL) ou por falha de autorização explícita.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Union

from filelock import FileLock

from streamfinder.core import config

logger = logging.getLogger(__name__)

SESSION_TTL = 6 * 60 * 60  # segundos
LOCK_TIMEOUT = 10.0


# ---------------------------------------------------------------------------
# Estruturas de dados
# ---------------------------------------------------------------------------

@dataclass
class Cookie:
    """Cookie do navegador, no subconjunto necessário para o cabeçalho Cookie."""
    name: str
    value: str = field(repr=False)
    domain: str
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    expires: Optional[float] = None

    def matches_host(self, host: str) -> bool:
        """True se o domínio do cookie for o próprio host ou um domínio pai."""
        domain = self.domain.lstrip(".").lower()
        host = host.lower()
        if not domain:
            return False
        return host == domain or host.endswith("." + domain)

    @classmethod
    def from_browser(cls, data: Dict[str, Any]) -> "Cookie":
        """Converte um cookie no formato do Playwright (``context.cookies()``)."""
        expires = data.get("expires")
        return cls(
            name=data.get("name", ""),
            value=data.get("value", ""),
            domain=data.get("domain", ""),
            path=data.get("path", "/"),
            secure=bool(data.get("secure", False)),
            http_only=bool(data.get("httpOnly", data.get("http_only", False))),
            expires=float(expires) if expires not in (None, -1) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
            "expires": self.expires,
        }


def filter_cookies(cookies: Iterable[Cookie], host: str) -> List[Cookie]:
    """Mantém apenas os cookies do host alvo ou de seus domínios pai."""
    return [c for c in cookies if c.matches_host(host)]


def build_cookie_header(cookies: Iterable[Cookie], host: Optional[str] = None) -> str:
    """Monta o valor do cabeçalho ``Cookie`` (opcionalmente filtrando por host)."""
    selected = filter_cookies(cookies, host) if host else list(cookies)
    return "; ".join(f"{c.name}={c.value}" for c in selected)


@dataclass
class Session:
    """Credenciais capturadas para chamar a API de manifesto."""
    visitor_id: str = field(repr=False)
    proof_token: str = field(default="", repr=False)
    cookies: List[Cookie] = field(default_factory=list, repr=False)
    client_version: str = ""
    signature_timestamp: int = 0
    captured_at: float = field(default_factory=time.time)
    user_agent: str = ""

    @property
    def is_valid(self) -> bool:
        return bool(self.visitor_id)

    @property
    def is_degraded(self) -> bool:
        return not self.proof_token

    def age(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.captured_at

    def is_expired(self, ttl: float = SESSION_TTL, now: Optional[float] = None) -> bool:
        return self.age(now) > ttl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visitorId": self.visitor_id,
            "proofToken": self.proof_token or None,
            "cookies": [c.to_dict() for c in self.cookies],
            "clientVersion": self.client_version,
            "signatureTimestamp": self.signature_timestamp,
            "capturedAt": self.captured_at,
            "userAgent": self.user_agent,
        }

    @staticmethod
    def create(**kwargs) -> "Session":
        """Cria ``Session`` ou ``DegradedSession`` conforme a presença do proof token."""
        cls = Session if kwargs.get("proof_token") else DegradedSession
        return cls(**kwargs)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Session":
        return Session.create(
            visitor_id=data.get("visitorId") or "",
            proof_token=data.get("proofToken") or "",
            cookies=[Cookie.from_browser(c) for c in data.get("cookies") or []],
            client_version=data.get("clientVersion") or "",
            signature_timestamp=int(data.get("signatureTimestamp") or 0),
            captured_at=float(data.get("capturedAt") or 0),
            user_agent=data.get("userAgent") or "",
        )


class DegradedSession(Session):
    """
    Sessão com apenas o visitor id (sem proof token).

    Não é um erro: o chamador segue adiante e o resolvedor registra um aviso.
    A aceitação desse modo pela origem é de melhor esforço.
    """


class LoadResult(NamedTuple):
    session: Optional[Session]
    found: bool
    expired: bool

    @property
    def usable(self) -> bool:
        return self.session is not None and self.found and not self.expired


# ---------------------------------------------------------------------------
# Armazenamento
# ---------------------------------------------------------------------------

class SessionStore:
    """
    Cache em disco da sessão capturada, com tempo de vida fixo.

    Parâmetros
    ----------
    path : str ou Path, opcional
        Caminho do arquivo. Padrão: ``<config dir>/youtube_session.json``.
    ttl : float
        Tempo de vida em segundos (padrão: 6 horas).
    clock : callable
        Fonte de tempo (epoch em segundos); injetável para testes.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        ttl: float = SESSION_TTL,
        clock: Callable[[], float] = time.time,
        lock_timeout: float = LOCK_TIMEOUT,
    ):
        self.path = Path(path) if path else config.session_path()
        self.ttl = ttl
        self.clock = clock
        self._lock = FileLock(str(self.path) + ".lock", timeout=lock_timeout)

    def load(self) -> LoadResult:
        """
        Lê a sessão do disco.

        Distingue "nunca capturada" (``found=False``) de "capturada mas
        expirada" (``expired=True``); em ambos os casos é necessária uma nova
        captura. Arquivos corrompidos ou sem visitor id contam como não
        encontrados.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LoadResult(None, found=False, expired=False)

        try:
            session = Session.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("[!] Sessão em cache ilegível (%s); será recapturada.", e)
            return LoadResult(None, found=False, expired=False)

        if not session.is_valid or not session.captured_at:
            logger.warning("[!] Sessão em cache sem visitor id; será recapturada.")
            return LoadResult(None, found=False, expired=False)

        now = self.clock()
        if session.is_expired(self.ttl, now):
            logger.info(
                "[*] Sessão em cache expirada (%.1f horas).", session.age(now) / 3600
            )
            return LoadResult(None, found=True, expired=True)

        logger.info("[*] Usando sessão em cache (%.1f horas).", session.age(now) / 3600)
        return LoadResult(session, found=True, expired=False)

    def save(self, session: Session) -> None:
        """Grava a sessão de forma atômica, com permissão 0600."""
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        content = json.dumps(session.to_dict(), indent=2)

        with self._lock:
            fd, tmp_path = tempfile.mkstemp(
                prefix=self.path.name + ".", suffix=".tmp", dir=str(directory)
            )
            try:
                if hasattr(os, "fchmod"):
                    os.fchmod(fd, 0o600)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        logger.debug("Sessão gravada em %s", self.path)

    def invalidate(self) -> None:
        """Remove a sessão em cache (ex.: após rejeição de assinatura)."""
        with self._lock:
            self.path.unlink(missing_ok=True)
        logger.info("[*] Sessão em cache invalidada.")
