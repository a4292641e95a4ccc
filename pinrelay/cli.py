"""
pinrelay CLI - Command line interface for the relay.

Commands:
- serve: Run the HTTP relay
- routes: Show the resolved route table
- state: Inspect stored per-stream state
- emit: Post a test event to a running relay
- monitor: p99 / rollback report from the telemetry file
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
import requests

from pinrelay import __version__
from pinrelay.config import config, configure_logging
from pinrelay.engine.router import RouteTable
from pinrelay.errors import PersistenceError, RouteConfigError
from pinrelay.store.state_store import FileStateStore
from pinrelay.telemetry.monitor import RollbackMonitor
from pinrelay.telemetry.sinks import read_jsonl


@click.group()
@click.version_option(version=__version__)
def cli():
    """pinrelay - 每个 stream 一张置顶状态卡"""
    configure_logging(config.log_level)


@cli.command()
@click.option('--host', default="0.0.0.0", show_default=True, help='监听地址')
@click.option('--port', default=8080, show_default=True, type=int, help='监听端口')
def serve(host: str, port: int):
    """启动 HTTP relay"""
    import uvicorn

    config.ensure_directories()
    click.echo(f"pinrelay {__version__} (deployment {config.deployment_version}) on {host}:{port}")
    uvicorn.run("pinrelay.api:app", host=host, port=port, log_config=None)


@cli.command()
@click.option('--file', '-f', 'routes_file', type=click.Path(exists=True, path_type=Path), help='routes YAML 文件')
def routes(routes_file: Optional[Path]):
    """显示路由表"""
    try:
        table = RouteTable.load(routes_file)
    except RouteConfigError as e:
        click.echo(f"✗ 路由配置错误: {e}", err=True)
        sys.exit(2)

    click.echo("\n=== 路由表 ===")
    for hint, target in sorted(table.routes.items()):
        click.echo(f"  {hint:<20} -> stream={target.stream_key} topic={target.topic or '(general)'}")
    click.echo(f"  {'(default)':<20} -> stream={table.default.stream_key} topic={table.default.topic or '(general)'}")


@cli.group()
def state():
    """查看 stream 状态"""


@state.command("list")
def state_list():
    """列出所有有状态的 stream"""
    store = FileStateStore(base_dir=config.state_dir)
    try:
        keys = asyncio.run(store.list_keys())
    except PersistenceError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(2)

    if not keys:
        click.echo("(no state)")
        return
    for key in keys:
        click.echo(key)


@state.command("show")
@click.argument('stream_key')
def state_show(stream_key: str):
    """
    显示某个 stream 的置顶消息

    STREAM_KEY: stream 标识 (如 mobile-app)
    """
    store = FileStateStore(base_dir=config.state_dir)
    try:
        current = asyncio.run(store.get(stream_key))
    except PersistenceError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(2)

    if current is None:
        click.echo(f"✗ {stream_key} 没有状态", err=True)
        sys.exit(1)
    click.echo(json.dumps(current.model_dump(mode='json'), indent=2, ensure_ascii=False))


@cli.command()
@click.argument('action')
@click.argument('subject_id', type=int)
@click.option('--hint', '-h', 'hint', help='路由提示 (如 mobile-app)')
@click.option('--source', '-s', default="", help='事件来源 (如 org/repo)')
@click.option('--url', default="http://localhost:8080", show_default=True, help='relay 地址')
@click.option('--token', envvar="PINRELAY_INBOUND_TOKEN", help='inbound 凭证')
def emit(action: str, subject_id: int, hint: Optional[str], source: str, url: str, token: Optional[str]):
    """
    向运行中的 relay 发送测试事件

    ACTION: 事件动作 (如 review)
    SUBJECT_ID: 数字 id (如 PR 号)
    """
    endpoint = f"{url.rstrip('/')}/api/v1/events"
    if hint:
        endpoint = f"{endpoint}/{hint}"
    headers = {"Authorization": f"Bearer {token}"} if token else {}

    try:
        response = requests.post(
            endpoint,
            json={"action": action, "subjectId": subject_id, "source": source},
            headers=headers,
            timeout=config.step_timeout,
        )
    except requests.exceptions.RequestException as e:
        click.echo(f"✗ 请求失败: {e}", err=True)
        sys.exit(2)

    try:
        body = response.json()
    except ValueError:
        body = {"raw": response.text}
    click.echo(json.dumps(body, indent=2, ensure_ascii=False))
    if response.status_code >= 400:
        click.echo(f"✗ HTTP {response.status_code}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--file', '-f', 'telemetry_file', type=click.Path(path_type=Path), help='telemetry JSONL 文件')
@click.option('--threshold', type=float, help='p99 阈值 (ms)')
@click.option('--min-samples', type=int, help='最少样本数')
def monitor(telemetry_file: Optional[Path], threshold: Optional[float], min_samples: Optional[int]):
    """按部署版本计算 p99 并判断是否需要回滚"""
    path = telemetry_file or config.telemetry_file
    rollback_monitor = RollbackMonitor(threshold_ms=threshold, min_samples=min_samples)
    for record in read_jsonl(path):
        rollback_monitor.emit(record)

    statuses = rollback_monitor.statuses()
    if not statuses:
        click.echo(f"(no telemetry in the window: {path})")
        return

    click.echo("\n=== Rollback Monitor ===")
    breached = False
    for status in statuses:
        p99 = f"{status.p99_ms:.1f}ms" if status.p99_ms is not None else "-"
        flag = '✗ ROLLBACK' if status.rollback else '✓ OK'
        click.echo(
            f"{status.deployment_version:<16} samples={status.samples:<6} "
            f"failures={status.failures:<5} p99={p99:<10} {flag}"
        )
        breached = breached or status.rollback
    sys.exit(1 if breached else 0)


if __name__ == "__main__":
    cli()
