"""Command line entrypoint for weathermen.

Implements two commands:

* ``collect``: run one collection cycle over every configured location and
  provider and print the normalized measurements.
* ``nearest-station``: look up the closest station in a local station dataset.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from weathermen import __version__
from weathermen.core.config import DEFAULT_CONFIG, ConfigError, load_settings
from weathermen.core.debug import DebugCollector, JsonlDebugWriter, NullDebugCollector
from weathermen.core.errors import DatasetLoadError, NoStationFound
from weathermen.core.models import Coordinates, Settings, ValidationError
from weathermen.engine.aggregate import Aggregator, results_frame
from weathermen.geo.stations import GeoResolver, haversine_km, read_dwd_station_list, read_station_table

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

app = typer.Typer(add_completion=False, help="Weather provider aggregation CLI")


def build_aggregator(settings: Settings, debug: DebugCollector) -> Aggregator:
    """Factory separated for easy monkeypatching in tests."""

    return Aggregator.from_settings(settings, debug=debug)


def _exit_with_error(msg: str) -> None:
    typer.echo(f"Error: {msg}", err=True)
    raise typer.Exit(code=1)


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("weathermen").setLevel(level)


@app.command()
def collect(
    config: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Settings YAML/JSON file"),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table or json"),
    output: Optional[Path] = typer.Option(None, help="Write results to this file instead of stdout"),
    debug: Optional[Path] = typer.Option(None, help="Write debug JSONL to this path"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Repeat for more logging"),
):
    """Fetch current conditions for every (location, provider) pair once."""

    _configure_logging(verbose)
    fmt = format.lower()
    if fmt not in {"table", "json"}:
        _exit_with_error("format must be table or json")

    try:
        settings = load_settings(config)
    except ConfigError as exc:
        _exit_with_error(str(exc))

    debug_collector = JsonlDebugWriter(debug) if debug else NullDebugCollector()
    try:
        aggregator = build_aggregator(settings, debug_collector)
        results = aggregator.collect_all()
    finally:
        if isinstance(debug_collector, JsonlDebugWriter):
            debug_collector.close()

    frame = results_frame(results)
    if fmt == "json":
        text = json.dumps(frame.to_dict(orient="records"), indent=2, default=str)
    else:
        text = frame.to_string(index=False)

    if output:
        output.write_text(text + "\n")
        typer.echo(f"Wrote {len(results)} results to {output}")
    else:
        typer.echo(text)

    for result in results:
        if not result.ok:
            typer.echo(f"Warning: {result.provider} / {result.location}: {result.error_kind}: {result.error}", err=True)
    if debug:
        typer.echo(f"Debug events -> {debug}")


@app.command("nearest-station")
def nearest_station(
    dataset: Path = typer.Option(..., exists=True, readable=True, help="Station table (CSV, optionally .gz/.zip)"),
    lat: float = typer.Option(..., help="Latitude in degrees"),
    lon: float = typer.Option(..., help="Longitude in degrees"),
    dwd: bool = typer.Option(False, "--dwd", help="Dataset is a DWD *_Beschreibung_Stationen.txt file"),
):
    """Print the station closest to the given coordinates."""

    try:
        target = Coordinates(latitude=lat, longitude=lon)
    except ValidationError as exc:
        _exit_with_error(str(exc))

    loader = (lambda: read_dwd_station_list(dataset)) if dwd else (lambda: read_station_table(dataset))
    resolver = GeoResolver()
    try:
        resolver.build(loader)
        station = resolver.nearest(target)
    except (DatasetLoadError, NoStationFound) as exc:
        _exit_with_error(str(exc))

    distance = float(haversine_km(target.latitude, target.longitude, station.latitude, station.longitude))
    typer.echo(f"{station.id}\t{station.name or ''}\t{station.latitude:.4f},{station.longitude:.4f}\t{distance:.2f} km")


def _print_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def version_callback(
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show version and exit"
    ),
):
    pass


def main() -> None:  # pragma: no cover - thin wrapper for console_script
    app()


__all__ = ["app", "main", "build_aggregator"]


if __name__ == "__main__":  # pragma: no cover
    main()
