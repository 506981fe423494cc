"""API server command."""

import typer

from marketsync.api.main import run_api

app = typer.Typer(help="Start the backend API (markets, realtime feed, proxy)")


@app.callback(invoke_without_command=True)
def api(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Bind host"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    with_poller: bool = typer.Option(
        False, "--with-poller", help="Run the aggregator poll job in the same process",
    ),
) -> None:
    if ctx.invoked_subcommand is not None:
        return
    run_api(host=host, port=port, with_poller=with_poller, settings=ctx.obj["settings"])
