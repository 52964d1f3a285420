"""difygate CLI — run the gateway and manage it over HTTP."""

from __future__ import annotations

import json

import httpx
import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

app = typer.Typer(
    name="difygate",
    help="difygate — OpenAI-compatible gateway for Dify apps",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:8000"


def _get_client(base_url: str, admin_key: str | None = None, bearer: str | None = None) -> httpx.Client:
    headers = {}
    if admin_key:
        headers["X-API-Key"] = admin_key
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    return httpx.Client(base_url=base_url, headers=headers, timeout=120.0)


def _request(client: httpx.Client, method: str, path: str, **kwargs) -> httpx.Response:
    try:
        resp = client.request(method, path, **kwargs)
        resp.raise_for_status()
    except httpx.ConnectError:
        console.print(f"[red]✗[/red] difygate is not running at {client.base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        console.print(f"[red]Error {e.response.status_code}:[/red] {e.response.text}")
        raise typer.Exit(1)
    return resp


@app.command()
def serve() -> None:
    """Run the gateway server (settings come from difygate.yaml / DIFYGATE_* env)."""
    from difygate.main import main

    main()


@app.command()
def status(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="DIFYGATE_URL"),
) -> None:
    """Check gateway status."""
    with _get_client(base_url) as client:
        data = _request(client, "GET", "/health").json()

    table = Table(title="difygate status", show_header=False, border_style="blue")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    table.add_row("Status", f"[green]{data['status']}[/green]")
    table.add_row("Version", data.get("version", "?"))
    table.add_row("Uptime", f"{data.get('uptime_seconds', '?')}s")
    apps = data.get("apps") or {}
    table.add_row("Apps", f"{apps.get('active_apps', 0)} enabled / {apps.get('total_apps', 0)} total")

    console.print()
    console.print(table)
    console.print()


@app.command()
def apps(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="DIFYGATE_URL"),
    admin_key: str = typer.Option("", "--admin-key", "-k", envvar="DIFYGATE_ADMIN_API_KEY"),
) -> None:
    """List registered apps and their gateway keys."""
    with _get_client(base_url, admin_key=admin_key or None) as client:
        data = _request(client, "GET", "/api/apps").json()

    if not data:
        console.print("[dim]No apps registered.[/dim]")
        return

    table = Table(title="Apps", border_style="blue")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Model")
    table.add_column("Enabled")
    table.add_column("Gateway key")

    for row in data:
        table.add_row(
            str(row["id"]),
            row["name"],
            row.get("bot_type", ""),
            row.get("model_name") or "dify",
            "[green]yes[/green]" if row.get("is_enabled") else "[red]no[/red]",
            row.get("generated_api_key") or "",
        )

    console.print()
    console.print(table)
    console.print()


@app.command("add-app")
def add_app(
    name: str = typer.Argument(..., help="Display name"),
    dify_url: str = typer.Option(..., "--dify-url", help="Dify API base URL, e.g. https://api.dify.ai/v1"),
    dify_key: str = typer.Option(..., "--dify-key", help="Dify app API key"),
    bot_type: str = typer.Option("Chat", "--type", "-t", help="Chat, Completion or Workflow"),
    input_variable: str = typer.Option("", "--input-var", help="Send the query as this input variable"),
    output_variable: str = typer.Option("", "--output-var", help="Workflow output to return"),
    model_name: str = typer.Option("dify", "--model", "-m", help="Model name reported by /v1/models"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="DIFYGATE_URL"),
    admin_key: str = typer.Option("", "--admin-key", "-k", envvar="DIFYGATE_ADMIN_API_KEY"),
) -> None:
    """Register a Dify app and print its gateway key."""
    payload = {
        "name": name,
        "dify_api_url": dify_url,
        "dify_api_key": dify_key,
        "bot_type": bot_type,
        "input_variable": input_variable or None,
        "output_variable": output_variable or None,
        "model_name": model_name,
    }
    with _get_client(base_url, admin_key=admin_key or None) as client:
        data = _request(client, "POST", "/api/apps", json=payload).json()

    console.print(f"[green]✓[/green] Registered [bold]{data['name']}[/bold] (id {data['id']})")
    console.print(f"Gateway key: [cyan]{data['generated_api_key']}[/cyan]")


@app.command()
def logs(
    limit: int = typer.Option(20, "--limit", "-n"),
    status_code: int | None = typer.Option(None, "--status", help="Only show this status code"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="DIFYGATE_URL"),
    admin_key: str = typer.Option("", "--admin-key", "-k", envvar="DIFYGATE_ADMIN_API_KEY"),
) -> None:
    """Show recent gateway calls."""
    params: dict = {"limit": limit}
    if status_code is not None:
        params["status"] = status_code
    with _get_client(base_url, admin_key=admin_key or None) as client:
        data = _request(client, "GET", "/api/logs", params=params).json()

    rows = data.get("data", [])
    if not rows:
        console.print("[dim]No calls logged yet.[/dim]")
        return

    table = Table(title=f"Call logs ({data.get('total', len(rows))} total)", border_style="blue")
    table.add_column("Time")
    table.add_column("App", style="cyan")
    table.add_column("Status", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("Error")

    for row in rows:
        code = row.get("status_code")
        style = "green" if code == 200 else "red"
        table.add_row(
            (row.get("created_at") or "")[:19],
            row.get("app_name", ""),
            f"[{style}]{code}[/{style}]",
            str(row.get("response_time") or ""),
            (row.get("error_message") or "")[:60],
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to send"),
    api_key: str = typer.Option(..., "--api-key", "-k", envvar="DIFYGATE_KEY", help="Gateway API key"),
    model: str = typer.Option("dify", "--model", "-m"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Stream the answer"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON response"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="DIFYGATE_URL"),
) -> None:
    """Send one message through /v1/chat/completions."""
    payload = {
        "model": model,
        "messages": [{"role": "user", "content": message}],
        "stream": stream,
    }
    with _get_client(base_url, bearer=api_key) as client:
        if not stream:
            data = _request(client, "POST", "/v1/chat/completions", json=payload).json()
            if raw:
                console.print_json(json.dumps(data))
                return
            console.print()
            console.print(Markdown(data["choices"][0]["message"]["content"]))
            console.print()
            usage = data.get("usage") or {}
            console.print(f"[dim]tokens: {usage.get('total_tokens', '?')}[/dim]")
            return

        try:
            with client.stream("POST", "/v1/chat/completions", json=payload) as resp:
                if resp.status_code >= 400 and "text/event-stream" not in resp.headers.get("content-type", ""):
                    resp.read()
                    console.print(f"[red]Error {resp.status_code}:[/red] {resp.text}")
                    raise typer.Exit(1)
                for line in resp.iter_lines():
                    if not line.startswith("data:"):
                        continue
                    data_text = line[5:].strip()
                    if data_text == "[DONE]":
                        break
                    if raw:
                        console.print(data_text)
                        continue
                    chunk = json.loads(data_text)
                    if "error" in chunk:
                        console.print(f"\n[red]Error:[/red] {chunk['error']}")
                        continue
                    delta = chunk["choices"][0].get("delta", {})
                    console.print(delta.get("content", ""), end="")
        except httpx.ConnectError:
            console.print(f"[red]✗[/red] difygate is not running at {base_url}")
            raise typer.Exit(1)
        console.print()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
