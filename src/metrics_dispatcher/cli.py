from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import IO, Iterator, Optional, Sequence

import typer
from loguru import logger
from pydantic import ValidationError

from .dispatcher import Dispatcher
from .errors import BufferFull
from .point import Point
from .settings import DispatcherSettings, get_influx_settings, get_settings
from .sinks import InfluxSink, encode_line_protocol
from .types import Sink

app = typer.Typer(help="metrics-dispatcher operational CLI")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", envvar="METRICS_DISPATCHER_LOG_LEVEL"),
):
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())


class EchoSink(Sink[Point]):
    """Prints line protocol instead of writing it (used by --dry-run)."""

    def __init__(self, precision: str = "ns"):
        self._precision = precision

    async def write(self, batch: Sequence[Point]) -> None:
        typer.echo(encode_line_protocol(batch, self._precision).decode("utf-8"))


def iter_points(fh: IO[str]) -> Iterator[Point]:
    """Yield Points from NDJSON, skipping blank lines."""
    for lineno, line in enumerate(fh, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield Point.model_validate(json.loads(line))
        except (json.JSONDecodeError, ValidationError) as e:
            raise typer.BadParameter(f"line {lineno}: {e}") from e


async def _enqueue_with_backpressure(dispatcher: Dispatcher, point: Point) -> int:
    """Enqueue, flushing whenever a reject-mode buffer is full.

    Returns how many flushes the point had to wait for.
    """
    waits = 0
    while True:
        try:
            dispatcher.enqueue(point)
            return waits
        except BufferFull:
            waits += 1
            await dispatcher.flush()


async def _send(points: Iterator[Point], sink: Sink[Point], cfg: DispatcherSettings) -> dict:
    waits = 0
    async with sink:
        async with Dispatcher.from_settings(sink, cfg) as dispatcher:
            for p in points:
                waits += await _enqueue_with_backpressure(dispatcher, p)
                # let the flush loop run between size-triggered batches
                await asyncio.sleep(0)
        h = dispatcher.health()
    if waits:
        logger.info(f"Buffer full {waits} times; input was paused for a flush each time")
    return {"delivered": h.delivered, "lost": h.lost, "dropped": h.dropped, "batches": h.cycles}


@app.command("send")
def send(
    path: Path = typer.Argument(..., help="NDJSON file of points ('-' for stdin)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print line protocol, do not write"),
    overflow_policy: Optional[str] = typer.Option(
        None, "--overflow-policy", help="drop_oldest | reject"
    ),
):
    """Enqueue points from NDJSON and flush them through a dispatcher."""
    overrides = {}
    if overflow_policy is not None:
        overrides["overflow_policy"] = overflow_policy
    try:
        cfg = DispatcherSettings(**overrides) if overrides else get_settings()
    except ValidationError as e:
        raise typer.BadParameter(str(e)) from e

    influx = get_influx_settings()
    sink: Sink[Point] = EchoSink(influx.precision) if dry_run else InfluxSink.from_settings(influx)

    fh = sys.stdin if str(path) == "-" else open(path, "r", encoding="utf-8")
    try:
        summary = asyncio.run(_send(iter_points(fh), sink, cfg))
    finally:
        if fh is not sys.stdin:
            fh.close()

    if dry_run:
        logger.info(f"Dry run summary: {summary}")
    else:
        typer.echo(json.dumps(summary, indent=2))
    if summary["lost"]:
        raise typer.Exit(code=1)


@app.command("ping")
def ping():
    """Check that the configured InfluxDB answers."""

    async def _ping() -> bool:
        async with InfluxSink.from_settings() as sink:
            return await sink.ping()

    ok = asyncio.run(_ping())
    typer.echo(json.dumps({"ok": ok}, indent=2))
    if not ok:
        raise typer.Exit(code=1)


@app.command("show-config")
def show_config():
    """Print the effective settings (token masked)."""
    influx = get_influx_settings().model_dump()
    if influx.get("token"):
        influx["token"] = "***"
    typer.echo(
        json.dumps({"dispatcher": get_settings().model_dump(), "influx": influx}, indent=2)
    )


if __name__ == "__main__":
    app()
