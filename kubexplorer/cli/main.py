"""kubexplorer command-line interface.

Commands:
    kubexplorer namespaces                       List namespaces.
    kubexplorer resources NS [--populated ...]   Resource types and counts in NS.
    kubexplorer objects NS RESOURCE              Objects of one type in NS.
    kubexplorer get NS RESOURCE NAME [--raw]     One object.
    kubexplorer watch NS                         Follow a scan's progress.
    kubexplorer clear-cache                      Drop all cached scans.
    kubexplorer version                          Print version and exit.
    kubexplorer serve                            Run the API server.

All client commands call the REST API at http://localhost:8080 (configurable
via ``--api-url``).  Output is colourised for readability.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator

import click
import httpx

from kubexplorer import __version__

_DEFAULT_API_URL = "http://localhost:8080"

# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

_COUNT_STATUS_COLORS: dict[str, str] = {
    "ok": "green",
    "denied": "bright_black",
    "error": "red",
    "skipped": "bright_black",
}

_EVENT_COLORS: dict[str, str] = {
    "scan_started": "cyan",
    "catalog_resolved": "cyan",
    "resource_counted": "white",
    "progress": "bright_black",
    "scan_complete": "green",
    "cache_hit": "green",
    "scan_failed": "red",
}

_TERMINAL_EVENTS = frozenset({"scan_complete", "cache_hit", "scan_failed"})


def _styled_count(count: int, status: str) -> str:
    if status != "ok":
        return click.style(f"{count} ({status})", fg=_COUNT_STATUS_COLORS.get(status, "white"))
    return click.style(str(count), fg="green" if count > 0 else "bright_black", bold=count > 0)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _connect_error(api_url: str) -> click.ClickException:
    return click.ClickException(f"Cannot connect to kubexplorer API at {api_url}. Is the server running?")


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> dict[str, object]:
    """Perform a GET request and return the parsed JSON body.

    Raises click.ClickException on connection errors or non-2xx responses.
    """
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=120.0) as client:
            response = client.get(url, params=params or {})
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]
    except httpx.ConnectError as err:
        raise _connect_error(api_url) from err
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)
        raise


def _post(api_url: str, path: str, body: dict[str, object] | None = None) -> dict[str, object]:
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=30.0) as client:
            response = client.post(url, json=body or {})
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]
    except httpx.ConnectError as err:
        raise _connect_error(api_url) from err
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)
        raise


def _handle_error_response(response: httpx.Response) -> None:
    """Parse an error response body and raise a friendly ClickException."""
    try:
        data: dict[str, object] = response.json()
        error_code = str(data.get("error", "ERROR"))
        detail = str(data.get("detail", "Unknown error"))
        msg = f"{error_code}: {detail}"
    except ValueError:
        msg = f"HTTP {response.status_code}: {response.text[:200]}"
    raise click.ClickException(msg)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="KUBEXPLORER_API_URL",
    show_default=True,
    help="kubexplorer REST API base URL.",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """kubexplorer: browse the resources in a Kubernetes namespace."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command("version")
def cmd_version() -> None:
    """Print the kubexplorer version and exit."""
    click.echo(f"kubexplorer {__version__}")


# ---------------------------------------------------------------------------
# kubexplorer namespaces
# ---------------------------------------------------------------------------


@cli.command("namespaces")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print raw JSON response.")
@click.pass_context
def cmd_namespaces(ctx: click.Context, output_json: bool) -> None:
    """List the namespaces visible to the server."""
    data = _get(ctx.obj["api_url"], "/api/v1/namespaces")
    if output_json:
        click.echo(json.dumps(data, indent=2))
        return
    namespaces: list[str] = data.get("namespaces", [])  # type: ignore[assignment]
    for name in namespaces:
        click.echo(name)


# ---------------------------------------------------------------------------
# kubexplorer resources
# ---------------------------------------------------------------------------


@cli.command("resources")
@click.argument("namespace")
@click.option("--search", "-s", default="", help="Case-insensitive substring of name or kind.")
@click.option("--populated", is_flag=True, default=False, help="Only resource types with objects.")
@click.option("--api-group", "-g", default="", help="Only this API group ('core' for the core group).")
@click.option("--top", type=click.IntRange(min=1), default=None, help="Only the N most populated types.")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print raw JSON response.")
@click.pass_context
def cmd_resources(
    ctx: click.Context,
    namespace: str,
    search: str,
    populated: bool,
    api_group: str,
    top: int | None,
    output_json: bool,
) -> None:
    """Show the resource types in NAMESPACE with their object counts."""
    params: dict[str, str] = {}
    if search:
        params["search"] = search
    if populated:
        params["populated"] = "true"
    if api_group:
        params["apiGroup"] = api_group
    if top is not None:
        params["top"] = str(top)

    data = _get(ctx.obj["api_url"], f"/api/v1/resources/{namespace}", params=params or None)

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    _print_resources(data)


def _print_resources(data: dict[str, object]) -> None:
    """Pretty-print a NamespaceResourcesResponse dict."""
    resources: list[dict[str, object]] = data.get("resources", [])  # type: ignore[assignment]
    source = "cached" if data.get("cached") else "fresh scan"
    click.echo(
        click.style(f"Namespace {data.get('namespace', '?')}", bold=True)
        + f"  {data.get('total_objects', 0)} objects, "
        + f"{data.get('shown', len(resources))}/{data.get('discovered', len(resources))} resource types"
        + click.style(f"  ({source})", fg="bright_black")
    )
    click.echo("")
    if not resources:
        click.echo(click.style("No matching resource types.", fg="yellow"))
        return

    width = max(len(str(r.get("display_name", ""))) for r in resources)
    for res in resources:
        label = str(res.get("display_name", "?"))
        count = int(res.get("count", 0))  # type: ignore[call-overload]
        status = str(res.get("count_status", "ok"))
        click.echo(f"  {label.ljust(width)}  {str(res.get('kind', '')).ljust(24)} {_styled_count(count, status)}")


# ---------------------------------------------------------------------------
# kubexplorer objects / get
# ---------------------------------------------------------------------------


@cli.command("objects")
@click.argument("namespace")
@click.argument("resource")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print raw JSON response.")
@click.pass_context
def cmd_objects(ctx: click.Context, namespace: str, resource: str, output_json: bool) -> None:
    """List objects of RESOURCE (e.g. pods, deployments.apps) in NAMESPACE."""
    data = _get(ctx.obj["api_url"], f"/api/v1/objects/{namespace}/{resource}")
    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    objects: list[dict[str, object]] = data.get("objects", [])  # type: ignore[assignment]
    click.echo(click.style(f"{resource} in {namespace} ({len(objects)})", bold=True))
    for obj in objects:
        created = obj.get("creation_timestamp") or ""
        click.echo(f"  {obj.get('name', '?')}" + click.style(f"  {created}", fg="bright_black"))


@cli.command("get")
@click.argument("namespace")
@click.argument("resource")
@click.argument("name")
@click.option("--raw", is_flag=True, default=False, help="Print the object exactly as the API server returns it.")
@click.pass_context
def cmd_get(ctx: click.Context, namespace: str, resource: str, name: str, raw: bool) -> None:
    """Show one object NAME of RESOURCE in NAMESPACE as JSON."""
    endpoint = "object-raw" if raw else "object"
    data = _get(ctx.obj["api_url"], f"/api/v1/{endpoint}/{namespace}/{resource}/{name}")
    click.echo(json.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# kubexplorer watch
# ---------------------------------------------------------------------------


@cli.command("watch")
@click.argument("namespace")
@click.pass_context
def cmd_watch(ctx: click.Context, namespace: str) -> None:
    """Scan NAMESPACE and print progress events as they arrive."""
    api_url: str = ctx.obj["api_url"]
    url = api_url.rstrip("/") + f"/api/v1/progress/{namespace}"
    try:
        with httpx.Client(timeout=httpx.Timeout(30.0, read=None)) as client:
            with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    response.read()
                    _handle_error_response(response)
                for event_type, payload in _iter_sse(response.iter_lines()):
                    _print_event(event_type, payload)
                    if event_type in _TERMINAL_EVENTS:
                        break
    except httpx.ConnectError as err:
        raise _connect_error(api_url) from err


def _iter_sse(lines: Iterable[str]) -> Iterator[tuple[str, dict[str, object]]]:
    """Yield ``(event_type, data)`` pairs from Server-Sent Events lines."""
    event_type = "message"
    data_lines: list[str] = []
    for line in lines:
        if not line:
            if data_lines:
                try:
                    payload = json.loads("\n".join(data_lines))
                except ValueError:
                    payload = {"message": "\n".join(data_lines)}
                yield event_type, payload
            event_type, data_lines = "message", []
        elif line.startswith("event:"):
            event_type = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].strip())


def _print_event(event_type: str, payload: dict[str, object]) -> None:
    color = _EVENT_COLORS.get(event_type, "white")
    click.echo(click.style(f"[{event_type}]", fg=color) + f" {payload.get('message', '')}")


# ---------------------------------------------------------------------------
# kubexplorer clear-cache
# ---------------------------------------------------------------------------


@cli.command("clear-cache")
@click.pass_context
def cmd_clear_cache(ctx: click.Context) -> None:
    """Drop the server's cached discovery and namespace scans."""
    _post(ctx.obj["api_url"], "/api/v1/cache/clear")
    click.echo(click.style("Cache cleared.", fg="green"))


# ---------------------------------------------------------------------------
# kubexplorer serve
# ---------------------------------------------------------------------------


@cli.command("serve")
@click.option("--console-log", is_flag=True, default=False, help="Human-readable logs instead of JSON.")
def cmd_serve(console_log: bool) -> None:
    """Run the kubexplorer API server (configured from KUBEXPLORER_* env vars)."""
    import asyncio

    from kubexplorer.app import main

    asyncio.run(main(console_log=console_log))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
