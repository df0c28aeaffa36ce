"""
config.py
=========
Localização do diretório de configuração e leitura das variáveis de ambiente
usadas pelo streamfinder.

O diretório de configuração guarda:
- ``youtube_session.json``: sessão capturada (permissões restritas ao dono).
- ``youtube_debug_response.json``: dump opcional da resposta bruta da API.
- ``browser/``: diretório de dados persistente do navegador isolado.

A variável ``STREAMFINDER_CONFIG_DIR`` sobrescreve o local padrão.
"""

import os
import platform
from pathlib import Path
from typing import Dict, Optional

APP_NAME = "streamfinder"

SESSION_FILENAME = "youtube_session.json"
DEBUG_RESPONSE_FILENAME = "youtube_debug_response.json"
BROWSER_DIRNAME = "browser"

CONFIG_DIR_ENV = "STREAMFINDER_CONFIG_DIR"


def _get_os() -> str:
    """Retorna 'windows', 'linux' ou 'macos'."""
    s = platform.system().lower()
    if s == "windows":
        return "windows"
    if s == "darwin":
        return "macos"
    return "linux"


def config_dir() -> Path:
    """Retorna o diretório de configuração (não o cria)."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(os.path.expanduser(override))

    os_name = _get_os()
    home = Path(os.path.expanduser("~"))
    if os_name == "windows":
        base = os.environ.get("APPDATA")
        return Path(base) / APP_NAME if base else home / "AppData" / "Roaming" / APP_NAME
    if os_name == "macos":
        return home / "Library" / "Application Support" / APP_NAME

    xdg = os.environ.get("XDG_CONFIG_HOME")
    return (Path(xdg) if xdg else home / ".config") / APP_NAME


def session_path() -> Path:
    return config_dir() / SESSION_FILENAME


def debug_response_path() -> Path:
    return config_dir() / DEBUG_RESPONSE_FILENAME


def browser_data_dir() -> Path:
    return config_dir() / BROWSER_DIRNAME


def proxy_settings() -> Optional[Dict[str, str]]:
    """
    Monta a configuração de proxy do Playwright a partir das variáveis de
    ambiente padrão (HTTPS_PROXY tem precedência sobre HTTP_PROXY).

    Retorna
    -------
    dict ou None
        ``{"server": ..., "bypass": ...}`` no formato aceito por
        ``browser_type.launch(proxy=...)``, ou None se nenhum proxy estiver
        configurado.
    """
    server = None
    for name in ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy"):
        value = os.environ.get(name)
        if value:
            server = value
            break
    if not server:
        return None

    proxy = {"server": server}
    bypass = os.environ.get("NO_PROXY") or os.environ.get("no_proxy")
    if bypass:
        proxy["bypass"] = bypass
    return proxy
