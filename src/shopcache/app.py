"""Typer application and CLI entry point for shopcache.

The CLI is a thin shell around :class:`~shopcache.cache.ShopCache`: each
command resolves the configuration, opens a cache for the duration of
the command, ensures the requested resources and prints them.

Commands::

    shopcache resources                  # declared resources and generated names
    shopcache fetch products             # load and print a collection or asset
    shopcache fetch products --id 7      # one entity by id
    shopcache children articles -p 1     # child collection for given parents
    shopcache token                      # access-token response
    shopcache --host URL --shop NAME init # save the user config

:func:`main` is the console-script entry point. A
:class:`~shopcache.exceptions.ShopcacheError` exits with its
``exit_code``; anything else writes a crash log under the data directory.
"""

from __future__ import annotations

import asyncio
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import typer

from shopcache import __version__
from shopcache.exit_codes import EXIT_GENERIC_FAILURE
from shopcache.models import ShopConfig


app = typer.Typer(
    name="shopcache",
    help="Load and inspect storefront resources through the load-once cache.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"shopcache {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    host: Optional[str] = typer.Option(None, "--host", help="App backend base URL."),
    shop: Optional[str] = typer.Option(None, "--shop", help="Shop handle or domain."),
    theme: Optional[str] = typer.Option(None, "--theme", help="Theme id for assets."),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every fetch and commit."),
) -> None:
    """Install the global output manager and stash connection overrides in ``ctx.obj``."""
    from shopcache.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))

    ctx.ensure_object(dict)
    ctx.obj["host"] = host
    ctx.obj["shop"] = shop
    ctx.obj["theme"] = theme


def _resolve(ctx: typer.Context) -> ShopConfig:
    from shopcache.config import resolve_config

    obj = ctx.obj or {}
    return resolve_config(
        cli_host=obj.get("host"),
        cli_shop=obj.get("shop"),
        cli_theme=obj.get("theme"),
    )


def _open_cache(config: ShopConfig) -> Any:
    """Create the cache for one command; tests patch this to inject a transport."""
    from shopcache.cache import ShopCache

    return ShopCache(config)


def _run(ctx: typer.Context, use: Callable[[Any], Awaitable[Any]]) -> Any:
    """Resolve config, open a cache, await ``use(cache)`` and return its result.

    Raises:
        typer.Exit: With the error's exit code on any
            :class:`~shopcache.exceptions.ShopcacheError`.
    """
    from shopcache.exceptions import ShopcacheError
    from shopcache.output import error

    async def run() -> Any:
        async with _open_cache(_resolve(ctx)) as cache:
            return await use(cache)

    try:
        return asyncio.run(run())
    except ShopcacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@app.command("resources")
def resources_command() -> None:
    """List declared resources and the accessor names generated for them."""
    from shopcache.models import AssetDescriptor, ChildCollectionDescriptor
    from shopcache.output import get_output
    from shopcache.registry import DEFAULT_REGISTRY

    by_resource: dict[str, list[str]] = {}
    for derived, (resource, _) in DEFAULT_REGISTRY.derived_names().items():
        by_resource.setdefault(resource, []).append(derived)

    rows: list[list[str]] = []
    for descriptor in DEFAULT_REGISTRY:
        if isinstance(descriptor, ChildCollectionDescriptor):
            source = f"{descriptor.parent_name}/{{id}}/{descriptor.child_name}"
        elif isinstance(descriptor, AssetDescriptor):
            source = f"themes/{{theme}}/assets {descriptor.asset_key}"
        else:
            source = descriptor.path
        rows.append([
            descriptor.slot,
            descriptor.kind.value,
            source,
            ", ".join(sorted(by_resource.get(descriptor.slot, []))),
        ])

    get_output().print_table(
        ["Resource", "Kind", "Endpoint", "Accessors"],
        rows,
        title=f"Resources ({len(rows)})",
    )


@app.command("fetch")
def fetch_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Collection or asset name."),
    entity_id: Optional[str] = typer.Option(None, "--id", help="Print only this entity."),
) -> None:
    """Ensure a collection or asset is loaded and print it."""
    from shopcache.exit_codes import EXIT_NOT_FOUND
    from shopcache.output import error, get_output
    from shopcache.sentinel import is_unloaded

    async def use(cache: Any) -> Any:
        await cache.ensure(name)
        if entity_id is None:
            return cache.all(name)
        return cache.by_id(name, entity_id)

    data = _run(ctx, use)
    if is_unloaded(data):
        error(f"No {name} entity with id {entity_id}")
        raise typer.Exit(code=EXIT_NOT_FOUND)
    get_output().print_resource(data)


@app.command("children")
def children_command(
    ctx: typer.Context,
    child_name: str = typer.Argument(..., help="Child collection name, e.g. articles."),
    parent: Optional[list[str]] = typer.Option(
        None, "--parent", "-p", help="Parent id to load (repeatable). Defaults to all parents."
    ),
) -> None:
    """Ensure a child collection is loaded for the given parents and print it."""
    from shopcache.output import get_output

    async def use(cache: Any) -> Any:
        parent_ids = parent or None
        await cache.ensure_children(child_name, parent_ids)
        if parent_ids is None:
            return cache.child_all(child_name)
        return {pid: cache.child_for(child_name, pid) for pid in parent_ids}

    get_output().print_resource(_run(ctx, use))


@app.command("token")
def token_command(ctx: typer.Context) -> None:
    """Request an access token for the configured shop."""
    from shopcache.output import get_output

    async def use(cache: Any) -> Any:
        return await cache.load_access_token()

    get_output().print_resource(_run(ctx, use))


@app.command("init")
def init_command(ctx: typer.Context) -> None:
    """Save the resolved connection settings (flags, env, files) as the user config."""
    from shopcache.config import save_user_config
    from shopcache.exceptions import ConfigError
    from shopcache.output import error, get_output

    try:
        path = save_user_config(_resolve(ctx))
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    get_output().info(f"Saved config to {path}")


def _setup_signal_handlers() -> None:
    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    from shopcache.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    )
    return str(log_path)


def main() -> None:
    """Console-script entry point.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from shopcache.exceptions import ShopcacheError
        from shopcache.output import error

        if isinstance(exc, ShopcacheError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
