"""
Server Discovery Commands

ローカルネットワーク内のサーバーを発見・公開するコマンド。
"""

import logging
import time
import uuid as uuid_lib
from typing import Dict, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..discovery import DNSSD, DiscoveryConfig, IPVer

logger = logging.getLogger(__name__)
console = Console()

discover_app = typer.Typer(
    name="discover",
    help="🔍 ローカルネットワーク内のサーバーを発見",
    no_args_is_help=True,
)


def _resolve_ip_ver(value: Optional[str], config: DiscoveryConfig) -> IPVer:
    if value is None:
        return config.ip_ver
    try:
        return IPVer.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _require_enabled(config: DiscoveryConfig) -> None:
    if not config.enabled:
        console.print(Panel(
            "DNS-SD discovery is disabled (REMOTE_DNSSD_ENABLED=false)",
            title="無効",
            border_style="yellow",
        ))
        raise typer.Exit(1)


def _urls_table(urls: Dict[str, Dict[IPVer, str]]) -> Table:
    table = Table(
        title=f"📡 {len(urls)}台のサーバーを発見",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("UUID", style="cyan", no_wrap=True)
    table.add_column("IP", style="green")
    table.add_column("URL", style="blue")
    for server_uuid in sorted(urls):
        for ip_ver, url in sorted(urls[server_uuid].items()):
            table.add_row(server_uuid, f"IPv{int(ip_ver)}", url)
    return table


@discover_app.callback()
def discover_callback():
    """ローカルサーバー発見機能"""
    pass


@discover_app.command("scan")
def scan_servers(
    ipver: Optional[str] = typer.Option(None, "--ipver", "-i", help="IP version (0=any, 4, 6)"),
):
    """
    ローカルネットワーク内のサーバーをスキャン

    最初の発見パスが完了するまで待ってから結果を表示します。
    """
    config = DiscoveryConfig()
    _require_enabled(config)
    ip_ver = _resolve_ip_ver(ipver, config)

    console.print("🔍 [bold cyan]サーバーを検索中...[/bold cyan]\n")
    try:
        with DNSSD(config=config) as dnssd:
            if not dnssd.status():
                console.print(Panel(
                    "❌ DNS-SD クライアントを利用できません",
                    title="検索失敗",
                    border_style="red",
                ))
                raise typer.Exit(1)
            urls = dnssd.get_server_urls(ip_ver)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(Panel(f"❌ エラー: {e}", title="検索失敗", border_style="red"))
        raise typer.Exit(1)

    if not urls:
        console.print(Panel(
            "❌ 発見されたサーバーはありません\n\n"
            "ヒント: 'remote-dnssd discover advertise' で自分を発見可能にできます",
            title="結果",
            border_style="yellow",
        ))
        return
    console.print(_urls_table(urls))


@discover_app.command("advertise")
def advertise_server(
    port: str = typer.Option(..., "--port", "-p", help="Service port"),
    server_uuid: Optional[str] = typer.Option(None, "--uuid", "-u", help="Identity tag (default: random)"),
    ipver: Optional[str] = typer.Option(None, "--ipver", "-i", help="IP version (0=any, 4, 6)"),
):
    """
    このホストのサーバーをローカルネットワークに公開

    Ctrl+Cで停止できます。
    """
    config = DiscoveryConfig()
    _require_enabled(config)
    ip_ver = _resolve_ip_ver(ipver, config)
    server_uuid = server_uuid or str(uuid_lib.uuid4())

    dnssd = DNSSD(config=config)
    try:
        if not dnssd.status():
            console.print(Panel(
                "❌ DNS-SD クライアントを利用できません",
                title="公開失敗",
                border_style="red",
            ))
            raise typer.Exit(1)
        dnssd.register_service(server_uuid, port, ip_ver)
        console.print(Panel(
            f"📡 サーバーを公開しました\n\n"
            f"  UUID: [cyan]{server_uuid}[/cyan]\n"
            f"  ポート: [cyan]{port}[/cyan]\n"
            f"  IP: [cyan]{'any' if ip_ver == IPVer.UNSPEC else f'IPv{int(ip_ver)}'}[/cyan]\n\n"
            f"[dim]Ctrl+Cで停止[/dim]",
            title="ローカル登録",
            border_style="green",
        ))
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n👋 登録を解除しました")
    finally:
        dnssd.close()


@discover_app.command("watch")
def watch_servers(
    ipver: Optional[str] = typer.Option(None, "--ipver", "-i", help="IP version (0=any, 4, 6)"),
    interval: float = typer.Option(2.0, "--interval", help="Refresh interval in seconds"),
):
    """
    サーバーの参加・離脱をリアルタイム監視
    """
    config = DiscoveryConfig()
    _require_enabled(config)
    ip_ver = _resolve_ip_ver(ipver, config)

    console.print("👀 [bold cyan]サーバーを監視中...[/bold cyan] [dim](Ctrl+Cで停止)[/dim]\n")
    with DNSSD(config=config) as dnssd:
        previous: Dict[str, Dict[IPVer, str]] = {}
        try:
            while True:
                current = dnssd.get_server_urls(ip_ver)
                for server_uuid in sorted(set(current) - set(previous)):
                    urls = ", ".join(current[server_uuid].values())
                    console.print(f"[green]➕ 参加:[/green] {server_uuid} @ {urls}")
                for server_uuid in sorted(set(previous) - set(current)):
                    console.print(f"[red]➖ 離脱:[/red] {server_uuid}")
                previous = current
                time.sleep(interval)
        except KeyboardInterrupt:
            pass


@discover_app.command("info")
def show_info():
    """
    DNS-SD クライアントの情報を表示
    """
    config = DiscoveryConfig()
    with DNSSD(config=config) as dnssd:
        info = dnssd.info()
        if info is None or not dnssd.status():
            console.print(Panel(
                "❌ DNS-SD クライアントを利用できません",
                title="状態",
                border_style="red",
            ))
            raise typer.Exit(1)
        dnssd.print_info()

    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("key", style="bold")
    table.add_column("value", style="cyan")
    table.add_row("Version", info.version)
    table.add_row("Hostname", info.host_name)
    table.add_row("Domain", info.domain_name)
    table.add_row("FQDN", info.host_name_fqdn)
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(Panel(table, title="DNS-SD", border_style="green"))
