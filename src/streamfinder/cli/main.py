"""
cli/main.py
===========
Interface de linha de comando do streamfinder.

Comandos:
  resolve <url|id> : captura/usa a sessão e resolve o manifesto do vídeo.
  sniff <url>      : detecta um manifesto (.m3u8, .mpd...) em qualquer página.
  session show     : mostra o estado da sessão em cache (sem segredos).
  session clear    : invalida a sessão em cache.
  browsers         : lista os navegadores detectados no sistema.
"""

import argparse
import asyncio
import logging
import sys
from functools import partial
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from streamfinder.core.browser_profile import detect_available_browsers
from streamfinder.core.driver import PlaywrightDriver, ensure_playwright_browsers
from streamfinder.core.errors import StreamFinderError
from streamfinder.core.log import redact, setup_logging
from streamfinder.core.manifest import Manifest, ManifestResolver
from streamfinder.core.session_store import SessionStore
from streamfinder.core.sniffer import StreamSniffer
from streamfinder.core.token_capture import TokenCapture
from streamfinder.plugins.specific_sites.youtube import extract_video_id

console = Console()
logger = logging.getLogger("streamfinder.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streamfinder",
        description="streamfinder: resolve manifestos de stream protegidos e detecta URLs de manifesto.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exemplos de uso:
  streamfinder resolve https://www.youtube.com/watch?v=dQw4w9WgXcQ
  streamfinder resolve dQw4w9WgXcQ --client ios --debug-dump
  streamfinder sniff https://exemplo.com/live --ext m3u8
  streamfinder session show
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Diagnóstico detalhado.")
    parser.add_argument(
        "--install-browsers", action="store_true",
        help="Instala o Chromium do Playwright antes de executar.",
    )

    browser_opts = argparse.ArgumentParser(add_help=False)
    group = browser_opts.add_argument_group("Opções de Navegador")
    group.add_argument(
        "--browser", choices=["chromium", "chrome", "edge"], default="chromium",
        help="Navegador a ser usado (padrão: chromium).",
    )
    group.add_argument(
        "--no-headless", action="store_false", dest="headless", default=True,
        help="Executa o navegador com interface gráfica.",
    )
    group.add_argument(
        "--budget", type=float, default=None,
        help="Orçamento de tempo em segundos para a etapa no navegador.",
    )

    sub = parser.add_subparsers(dest="command")

    resolve = sub.add_parser("resolve", parents=[browser_opts], help="Resolve o manifesto de um vídeo.")
    resolve.add_argument("target", help="URL ou ID do vídeo.")
    resolve.add_argument("--client", choices=["web", "ios"], default="web",
                         help="Identidade de cliente da requisição (padrão: web).")
    resolve.add_argument("--force-capture", action="store_true",
                         help="Ignora a sessão em cache e captura uma nova.")
    resolve.add_argument("--debug-dump", action="store_true",
                         help="Salva a resposta bruta da API no diretório de configuração.")

    sniff = sub.add_parser("sniff", parents=[browser_opts], help="Detecta um manifesto em uma página.")
    sniff.add_argument("url", help="URL da página.")
    sniff.add_argument("--ext", default="m3u8", help="Extensão procurada (padrão: m3u8).")

    session = sub.add_parser("session", help="Gerencia a sessão em cache.")
    session.add_argument("action", choices=["show", "clear"])

    sub.add_parser("browsers", help="Lista os navegadores detectados.")
    return parser


def _driver_factory(args: argparse.Namespace):
    return partial(PlaywrightDriver, browser=args.browser, headless=args.headless)


def print_manifest(manifest: Manifest) -> None:
    if manifest.title:
        console.print(f"\n[bold]Título:[/] {escape(manifest.title)}")
    if manifest.author:
        console.print(f"[bold]Autor:[/] {escape(manifest.author)}")
    if manifest.degraded:
        console.print("[bold yellow]Aviso:[/] sessão sem proof token (modo degradado).")

    table = Table(show_header=True, header_style="bold cyan")
    for column in ("itag", "origem", "container", "qualidade", "resolução", "bitrate", "tamanho"):
        table.add_column(column)
    for f in manifest.formats:
        table.add_row(
            str(f.itag or "-"),
            f.source,
            f.container or "-",
            f.quality or "-",
            f.resolution or "-",
            str(f.bitrate or "-"),
            str(f.content_length or "-"),
        )
    console.print(table)
    best = manifest.formats[0]
    console.print(f"\n[bold]URL:[/] [green]{best.url}[/]")


async def run_resolve(args: argparse.Namespace) -> None:
    video_id = extract_video_id(args.target)
    if not video_id:
        raise ValueError(f"Não foi possível extrair o ID do vídeo de: {args.target}")

    store = SessionStore()
    capture = TokenCapture(store, driver_factory=_driver_factory(args))
    kwargs = {"client": args.client, "debug_dump": args.debug_dump}
    if args.budget:
        kwargs["capture_budget"] = args.budget
    resolver = ManifestResolver(store, capture, **kwargs)

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console, transient=True) as progress:
        progress.add_task(f"[cyan]Resolvendo: {video_id}", total=None)
        session = None
        if args.force_capture:
            store.invalidate()
            session = await capture.capture(video_id, resolver.capture_budget)
        manifest = await resolver.resolve(video_id, session)

    print_manifest(manifest)


async def run_sniff(args: argparse.Namespace) -> None:
    sniffer = StreamSniffer(driver_factory=_driver_factory(args))
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console, transient=True) as progress:
        progress.add_task(f"[cyan]Processando: {args.url}", total=None)
        if args.budget:
            result = await sniffer.sniff(args.url, args.ext, args.budget)
        else:
            result = await sniffer.sniff(args.url, args.ext)

    if result.title:
        console.print(f"\n[bold]Título:[/] {escape(result.title)}")
    console.print(f"[bold]Estratégia:[/] {result.strategy}")
    console.print(f"[bold]URL:[/] [green]{result.url}[/]")
    for name, value in result.headers.items():
        console.print(f"  {name}: {value}")


def run_session(args: argparse.Namespace) -> None:
    store = SessionStore()
    if args.action == "clear":
        store.invalidate()
        console.print("[bold green]✓[/] Sessão removida.")
        return

    result = store.load()
    if not result.found:
        console.print(f"Nenhuma sessão em cache ({store.path}).")
        return
    if result.expired:
        console.print(f"Sessão em cache expirada ({store.path}).")
        return
    s = result.session
    console.print(f"[bold]Arquivo:[/] {store.path}")
    console.print(f"[bold]Idade:[/] {s.age(store.clock()) / 3600:.1f} horas")
    console.print(f"[bold]Visitor id:[/] {redact(s.visitor_id)}")
    console.print(f"[bold]Proof token:[/] {redact(s.proof_token)}")
    console.print(f"[bold]Cookies:[/] {len(s.cookies)}")
    console.print(f"[bold]Versão do cliente:[/] {s.client_version or '-'}")
    console.print(f"[bold]STS:[/] {s.signature_timestamp or '-'}")


def run_browsers() -> None:
    console.print("\n[bold cyan]Navegadores Detectados:[/]")
    for browser, exe in detect_available_browsers().items():
        status = exe if exe else "NÃO ENCONTRADO"
        console.print(f"  [{browser.upper()}] {status}")


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, console=console)

    if args.install_browsers and not ensure_playwright_browsers():
        return 1

    if args.command is None:
        parser.print_help()
        return 0 if args.install_browsers else 2

    try:
        if args.command == "resolve":
            asyncio.run(run_resolve(args))
        elif args.command == "sniff":
            asyncio.run(run_sniff(args))
        elif args.command == "session":
            run_session(args)
        elif args.command == "browsers":
            run_browsers()
    except (StreamFinderError, ValueError) as e:
        console.print(f"[bold red]Erro:[/] {escape(str(e))}")
        logger.debug("Detalhes:", exc_info=True)
        return 1
    except KeyboardInterrupt:
        console.print("[bold yellow]Interrompido.[/]")
        return 130
    return 0


def main_entry():
    sys.exit(main())


if __name__ == "__main__":
    main_entry()
