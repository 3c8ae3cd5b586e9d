"""Typer CLI entrypoint."""

from __future__ import annotations

import threading

import typer

from batteryfuse.core.config import load_settings
from batteryfuse.core.connections import ConnectionWatcher, list_connected_devices
from batteryfuse.core.errors import BatteryFuseError
from batteryfuse.core.model import Device
from batteryfuse.core.service import BatteryService
from batteryfuse.logging_utils import configure_logging, resolve_log_level

app = typer.Typer(help="Fused battery levels for connected Bluetooth accessories")


class EchoPresenter:
    def __init__(self) -> None:
        self.presented = threading.Event()

    def present(self, device: Device, battery_level: int | None) -> None:
        battery = f"{battery_level}%" if battery_level is not None else "unknown"
        address = device.address or "N/A"
        typer.echo(f"{device.name} ({address}) [{device.device_class.icon}] battery={battery}")
        self.presented.set()


def _build_service(presenter: EchoPresenter | None = None) -> BatteryService:
    service = BatteryService(presenter=presenter)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _fail(exc: BatteryFuseError) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@app.callback()
def main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Increase log verbosity"),
) -> None:
    try:
        fallback = load_settings().log_level
    except BatteryFuseError as exc:
        raise _fail(exc) from None
    configure_logging(resolve_log_level(verbose, fallback))


@app.command("probes")
def show_probes() -> None:
    """Run each enabled probe once and print its readings."""
    try:
        service = _build_service()
        results = service.collect_probe_results()
        if not results:
            typer.echo("No probes enabled")
            return

        for name, result in results:
            typer.echo(f"{name}:")
            if result.is_empty:
                typer.echo("  <no readings>")
                continue
            for key, level in sorted(result.addresses.items()):
                typer.echo(f"  address {key}: {level}%")
            for key, level in sorted(result.names.items()):
                typer.echo(f"  name {key}: {level}%")
    except BatteryFuseError as exc:
        raise _fail(exc) from None


@app.command("status")
def show_status() -> None:
    """Force a refresh cycle and print the fused battery cache."""
    try:
        service = _build_service()
        snapshot = service.refresh_now()
        if not snapshot.by_address and not snapshot.by_name:
            typer.echo("No battery levels found")
            return

        for key, level in sorted(snapshot.by_address.items()):
            typer.echo(f"address {key}: {level}%")
        for key, level in sorted(snapshot.by_name.items()):
            typer.echo(f"name {key}: {level}%")
    except BatteryFuseError as exc:
        raise _fail(exc) from None


@app.command("live")
def read_live(platform_ids: list[str] = typer.Argument(..., help="Platform peripheral identifiers")) -> None:
    """Read the GATT battery level of each peripheral once."""
    try:
        service = _build_service()
        report = service.read_live(platform_ids)
        if report.rejected:
            typer.echo("A live read is already running", err=True)
            raise typer.Exit(code=1)

        for platform_id, outcome in report.outcomes.items():
            level = f"{outcome.level}%" if outcome is not None else "unavailable"
            typer.echo(f"{platform_id}: {level}")
    except BatteryFuseError as exc:
        raise _fail(exc) from None


@app.command("resolve")
def resolve_device(
    name: str,
    address: str | None = typer.Option(None, "--address", help="Device MAC address"),
) -> None:
    """Simulate a connection event and print the presented battery level."""
    try:
        presenter = EchoPresenter()
        service = _build_service(presenter)
        try:
            service.handle_connected(name, address)
            presenter.presented.wait(service.settings.resolver.timeout_s + 1.0)
        finally:
            service.close()
    except BatteryFuseError as exc:
        raise _fail(exc) from None


@app.command("watch")
def watch_connections() -> None:
    """Present a notification for every accessory connect until interrupted."""
    try:
        service = _build_service(EchoPresenter())
        watch_settings = service.settings.watch
        watcher = ConnectionWatcher(
            service.handle_connected,
            service.handle_disconnected,
            lister=lambda: list_connected_devices(watch_settings.command),
            interval_s=watch_settings.interval_s,
            on_tick=lambda: service.refresh_connected_device_batteries(force=False),
        )
        stop = threading.Event()
        try:
            watcher.run(stop)
        except KeyboardInterrupt:
            stop.set()
        finally:
            service.close()
    except BatteryFuseError as exc:
        raise _fail(exc) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
