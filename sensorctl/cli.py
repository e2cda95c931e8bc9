"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
import yaml

from sensorctl.core.controller import DeviceController
from sensorctl.core.errors import SensorctlError
from sensorctl.core.matcher import compare as compare_templates
from sensorctl.core.model import EnrollmentOutcome
from sensorctl.core.profile_loader import PROFILE_ENV_VAR, load_profiles, select_profile

app = typer.Typer(help="Fingerprint/RFID access terminal control over serial or HTTP")


class _State:
    profile: str | None = None


_state = _State()


@app.callback()
def main(
    profile: str | None = typer.Option(
        None, "--profile", envvar=PROFILE_ENV_VAR, help="Deployment profile ID"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol traffic"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _state.profile = profile


def _open_controller() -> DeviceController:
    loaded = load_profiles()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return DeviceController.from_profile(select_profile(loaded, _state.profile))


def _fail(exc: SensorctlError) -> typer.Exit:
    for message in exc.messages:
        typer.echo(f"  device: {message}", err=True)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


def _read_template(value: str) -> str:
    if not value.startswith("@"):
        return value.strip()
    path = Path(value[1:])
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise typer.BadParameter(f"Could not read template file {path}: {exc}") from exc


@app.command("profiles")
def list_profiles() -> None:
    """List available deployment profiles."""
    try:
        loaded = load_profiles()
        for warning in loaded.warnings:
            typer.echo(f"Warning: {warning}", err=True)
        for profile in sorted(loaded.profiles.values(), key=lambda p: p.id):
            target = profile.transport.port or profile.transport.base_url
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  {profile.transport.type} {target} dialect={profile.dialect}")
    except SensorctlError as exc:
        raise _fail(exc) from None


@app.command("ping")
def ping() -> None:
    """Check that the terminal answers."""
    try:
        with _open_controller() as controller:
            typer.echo(controller.ping())
    except SensorctlError as exc:
        raise _fail(exc) from None


@app.command("count")
def count() -> None:
    """Print the number of templates stored on the sensor."""
    try:
        with _open_controller() as controller:
            typer.echo(f"{controller.count()} templates")
    except SensorctlError as exc:
        raise _fail(exc) from None


@app.command("delete")
def delete(template_id: int = typer.Argument(..., min=1, help="Sensor template ID")) -> None:
    """Delete one template from the sensor."""
    try:
        with _open_controller() as controller:
            typer.echo(controller.delete_by_id(template_id))
    except SensorctlError as exc:
        raise _fail(exc) from None


@app.command("empty")
def empty(
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
) -> None:
    """Delete every template stored on the sensor."""
    if not yes:
        typer.confirm("Delete every template on the sensor?", abort=True)
    try:
        with _open_controller() as controller:
            typer.echo(controller.empty_all())
    except SensorctlError as exc:
        raise _fail(exc) from None


@app.command("scan")
def scan() -> None:
    """Read one RFID card and print its UID."""
    try:
        with _open_controller() as controller:
            typer.echo(controller.scan_card())
    except SensorctlError as exc:
        raise _fail(exc) from None


@app.command("enroll")
def enroll() -> None:
    """Enroll a new fingerprint; follow the prompts on the terminal."""
    shown = 0

    def _progress(outcome: EnrollmentOutcome) -> None:
        nonlocal shown
        for message in outcome.messages[shown:]:
            typer.echo(f"  {message}")
        shown = len(outcome.messages)

    try:
        with _open_controller() as controller:
            outcome = controller.enroll(_progress)
    except SensorctlError as exc:
        raise _fail(exc) from None

    if outcome.recovered:
        for message in outcome.messages:
            typer.echo(f"  {message}")
    suffix = " (recovered)" if outcome.recovered else ""
    typer.echo(f"Enrolled ID {outcome.assigned_id}{suffix}")


@app.command("verify")
def verify(
    store: Path | None = typer.Option(
        None,
        "--store",
        exists=True,
        dir_okay=False,
        help="YAML mapping of template ID to hex template; match locally instead of on the sensor",
    ),
) -> None:
    """Verify a fingerprint against the sensor or a local template store."""

    def _progress(message: str) -> None:
        typer.echo(f"  {message}")

    try:
        with _open_controller() as controller:
            if store is None:
                result = controller.verify_against_device(_progress)
            else:
                result = controller.verify_against_store(None, _load_store(store))
    except SensorctlError as exc:
        raise _fail(exc) from None

    if result.found:
        typer.echo(f"Match: ID {result.template_id} confidence {result.confidence}")
    else:
        typer.echo("No match")
        raise typer.Exit(code=2)


@app.command("capture")
def capture() -> None:
    """Capture a template from the sensor and print it as hex."""
    try:
        with _open_controller() as controller:
            typer.echo(controller.capture_template())
    except SensorctlError as exc:
        raise _fail(exc) from None


@app.command("compare")
def compare(
    first: str = typer.Argument(..., help="Hex template, or @FILE containing one"),
    second: str = typer.Argument(..., help="Hex template, or @FILE containing one"),
) -> None:
    """Score two templates from 0 to 100."""
    typer.echo(str(compare_templates(_read_template(first), _read_template(second))))


def _load_store(path: Path) -> dict[int, str]:
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise typer.BadParameter(f"Could not read template store {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise typer.BadParameter(f"Template store {path} must be a mapping of ID to template")
    try:
        return {int(key): str(value) for key, value in loaded.items()}
    except (TypeError, ValueError) as exc:
        raise typer.BadParameter(f"Template store {path} has a non-integer ID: {exc}") from exc


def run() -> None:
    app()


if __name__ == "__main__":
    run()
