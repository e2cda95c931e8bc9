from __future__ import annotations

from typer.testing import CliRunner

from sensorctl import cli
from sensorctl.core.errors import ProtocolTimeout, RecoveryFailed, TransportUnavailable
from sensorctl.core.model import EnrollmentOutcome, EnrollStatus, MatchResult


class FakeController:
    def __init__(self) -> None:
        self.closed = False
        self.stores: list[tuple[str | None, dict[int, str]]] = []

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.closed = True

    def ping(self):
        return "PONG"

    def count(self):
        return 7

    def delete_by_id(self, template_id):
        return "Deleted!"

    def empty_all(self):
        return "Database emptied!"

    def scan_card(self):
        return "04A1B2C3"

    def enroll(self, on_progress=None):
        if on_progress is not None:
            on_progress(EnrollmentOutcome(status=EnrollStatus.PROCESSING, messages=("Place finger",)))
            on_progress(
                EnrollmentOutcome(status=EnrollStatus.PROCESSING, messages=("Place finger", "Remove finger"))
            )
        return EnrollmentOutcome(
            status=EnrollStatus.SUCCESS,
            messages=("Place finger", "Remove finger", "8"),
            assigned_id=8,
        )

    def verify_against_device(self, on_progress=None):
        if on_progress is not None:
            on_progress("Waiting for finger")
        return MatchResult(found=True, template_id=5, confidence=80)

    def verify_against_store(self, candidate_template, stored_templates):
        self.stores.append((candidate_template, dict(stored_templates)))
        return MatchResult(found=False)

    def capture_template(self, on_progress=None):
        return "ab" * 512


runner = CliRunner()


def _use(monkeypatch, controller) -> None:
    monkeypatch.setattr(cli, "_open_controller", lambda: controller)


def test_ping_and_count(monkeypatch):
    controller = FakeController()
    _use(monkeypatch, controller)

    result = runner.invoke(cli.app, ["ping"])
    assert result.exit_code == 0
    assert "PONG" in result.stdout
    assert controller.closed is True

    result = runner.invoke(cli.app, ["count"])
    assert result.exit_code == 0
    assert "7 templates" in result.stdout


def test_enroll_prints_each_progress_message_once(monkeypatch):
    _use(monkeypatch, FakeController())
    result = runner.invoke(cli.app, ["enroll"])
    assert result.exit_code == 0
    assert result.stdout.count("Place finger") == 1
    assert "Remove finger" in result.stdout
    assert "Enrolled ID 8" in result.stdout
    assert "(recovered)" not in result.stdout


def test_recovered_enroll_is_flagged(monkeypatch):
    class RecoveringController(FakeController):
        def enroll(self, on_progress=None):
            return EnrollmentOutcome(
                status=EnrollStatus.SUCCESS,
                messages=("Error: HTTP 502", "Recovered ID: 4"),
                assigned_id=4,
                recovered=True,
            )

    _use(monkeypatch, RecoveringController())
    result = runner.invoke(cli.app, ["enroll"])
    assert result.exit_code == 0
    assert "Recovered ID: 4" in result.stdout
    assert "Enrolled ID 4 (recovered)" in result.stdout


def test_enroll_failure_shows_device_messages(monkeypatch):
    class FailingController(FakeController):
        def enroll(self, on_progress=None):
            original = ProtocolTimeout("ENROLL: device silent for 30s", messages=["Place finger"])
            raise RecoveryFailed(str(original), messages=original.messages, original=original)

    _use(monkeypatch, FailingController())
    result = runner.invoke(cli.app, ["enroll"])
    assert result.exit_code == 1
    assert "device: Place finger" in result.stderr
    assert "Error: ENROLL: device silent for 30s" in result.stderr
    assert "Traceback" not in result.stderr


def test_verify_match_and_progress(monkeypatch):
    _use(monkeypatch, FakeController())
    result = runner.invoke(cli.app, ["verify"])
    assert result.exit_code == 0
    assert "Waiting for finger" in result.stdout
    assert "Match: ID 5 confidence 80" in result.stdout


def test_verify_against_store_without_match_exits_2(monkeypatch, tmp_path):
    store = tmp_path / "templates.yaml"
    store.write_text("3: " + "0f" * 512 + "\n", encoding="utf-8")
    controller = FakeController()
    _use(monkeypatch, controller)

    result = runner.invoke(cli.app, ["verify", "--store", str(store)])
    assert result.exit_code == 2
    assert "No match" in result.stdout
    assert controller.stores == [(None, {3: "0f" * 512})]


def test_unreachable_terminal_error_is_clean(monkeypatch):
    def refuse():
        raise TransportUnavailable("Could not open serial port COM9: FileNotFoundError")

    monkeypatch.setattr(cli, "_open_controller", refuse)
    result = runner.invoke(cli.app, ["scan"])
    assert result.exit_code == 1
    assert "Error: Could not open serial port COM9" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_delete_rejects_zero_before_connecting(monkeypatch):
    def explode():
        raise AssertionError("should not connect")

    monkeypatch.setattr(cli, "_open_controller", explode)
    result = runner.invoke(cli.app, ["delete", "0"])
    assert result.exit_code == 2


def test_empty_with_yes(monkeypatch):
    _use(monkeypatch, FakeController())
    result = runner.invoke(cli.app, ["empty", "--yes"])
    assert result.exit_code == 0
    assert "Database emptied!" in result.stdout


def test_profiles_command(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "esp32_serial: ESP32 + AS608 over USB serial" in result.stdout
    assert "serial /dev/ttyUSB0 dialect=verbose" in result.stdout


def test_compare_reads_template_files(tmp_path):
    first = tmp_path / "a.hex"
    first.write_text("0123456789abcdef" * 64 + "\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["compare", f"@{first}", f"@{first}"])
    assert result.exit_code == 0
    assert result.stdout.strip() == "100"
