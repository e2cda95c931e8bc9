"""HTTP tunnel transport.

The ESP32 firmware can expose its sensor through a small JSON API, usually
published via Cloudflare Tunnel or ngrok. This channel turns each command line
into one request and renders the JSON answer back into the active dialect's
line tokens, so the protocol layer stays transport-agnostic.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any

import httpx

from sensorctl.core.commands import PROGRESSIVE_COMMANDS
from sensorctl.core.dialects import Dialect, VerboseDialect
from sensorctl.core.errors import TransportFailure, TransportUnavailable
from sensorctl.core.model import LineKind, Outcome, TimeoutPolicy

LOGGER = logging.getLogger(__name__)

# Plain-text bodies (DELETE, EMPTY) use the sketch's verbose wording.
_FIRMWARE_TEXT = VerboseDialect()

_ENDPOINTS: dict[str, tuple[str, str]] = {
    "PING": ("GET", "/api/fingerprint/ping"),
    "COUNT": ("GET", "/api/fingerprint/count"),
    "DELETE": ("DELETE", "/api/fingerprint/{argument}"),
    "EMPTY": ("DELETE", "/api/fingerprint/empty"),
    "ENROLL": ("POST", "/api/fingerprint/enroll"),
    "VERIFY": ("POST", "/api/fingerprint/verify"),
    "CAPTURE": ("POST", "/api/fingerprint/capture"),
    "SCAN": ("POST", "/api/rfid/scan"),
}


class HttpTunnelChannel:
    def __init__(
        self,
        base_url: str,
        dialect: Dialect,
        *,
        timeouts: TimeoutPolicy | None = None,
        connect_timeout_s: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.dialect = dialect
        self.timeouts = timeouts or TimeoutPolicy()
        self.connect_timeout_s = connect_timeout_s
        self._transport = transport
        self._client: httpx.Client | None = None
        self._pending: deque[str] = deque()
        self.last_rx: float | None = None

    def open(self) -> None:
        if self._client is not None:
            return
        client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeouts.quick_s, connect=self.connect_timeout_s),
            transport=self._transport,
        )
        try:
            response = client.get(_ENDPOINTS["PING"][1])
            response.raise_for_status()
        except httpx.HTTPError as exc:
            client.close()
            raise TransportUnavailable(f"ESP32 at {self.base_url} is unreachable: {exc}") from exc
        self._client = client
        self._pending.append(self.dialect.render_ready("http"))
        LOGGER.info("HTTP tunnel to %s open", self.base_url)

    def read_line(self, deadline: float) -> str | None:
        self._require_open()
        if self._pending:
            return self._pending.popleft()
        # Responses arrive whole; nothing else can show up before the deadline.
        remaining = deadline - time.monotonic()
        if remaining > 0:
            time.sleep(remaining)
        return None

    def write_line(self, text: str) -> None:
        client = self._require_open()
        name, _, argument = text.strip().partition(" ")
        endpoint = _ENDPOINTS.get(name)
        if endpoint is None:
            raise TransportFailure(f"Command '{name}' has no HTTP endpoint")
        method, path = endpoint
        timeout_s = (
            self.timeouts.progressive_s if name in PROGRESSIVE_COMMANDS else self.timeouts.quick_s
        )

        LOGGER.debug(">>> %s %s", method, path.format(argument=argument))
        try:
            response = client.request(
                method,
                path.format(argument=argument.strip()),
                timeout=httpx.Timeout(timeout_s, connect=self.connect_timeout_s),
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise TransportFailure(f"HTTP {name} timed out after {timeout_s}s") from exc
        except httpx.HTTPStatusError as exc:
            body = exc.response.text.strip()
            raise TransportFailure(
                f"ESP32 answered {name} with HTTP {exc.response.status_code}: {body}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"HTTP {name} failed: {exc}") from exc

        lines = self._render(name, response)
        LOGGER.debug("<<< %s", lines)
        self.last_rx = time.monotonic()
        self._pending.extend(lines)

    def drain_stale(self) -> None:
        self._require_open()
        if self._pending:
            LOGGER.debug("Discarding %d stale lines", len(self._pending))
        self._pending.clear()

    def close(self) -> None:
        client, self._client = self._client, None
        self._pending.clear()
        if client is not None:
            client.close()
            LOGGER.info("HTTP tunnel to %s closed", self.base_url)

    def __enter__(self) -> HttpTunnelChannel:
        self.open()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _require_open(self) -> httpx.Client:
        if self._client is None:
            raise TransportFailure(f"HTTP tunnel to {self.base_url} is not open")
        return self._client

    def _render(self, name: str, response: httpx.Response) -> list[str]:
        dialect = self.dialect
        if name == "PING":
            return [dialect.render_pong()]
        if name in ("DELETE", "EMPTY"):
            # The firmware answers with its own status line; an empty body means success.
            success = dialect.render_deleted() if name == "DELETE" else dialect.render_emptied()
            body = response.text.strip()
            if not body:
                return [success]
            if dialect.classify(body).kind is LineKind.TERMINAL:
                return [body]
            status = _FIRMWARE_TEXT.classify(body)
            if status.outcome is Outcome.SUCCESS:
                return [success]
            if status.outcome is Outcome.DEVICE_ERROR:
                return [dialect.render_error(str(status.value))]
            return [dialect.render_error(f"Unexpected {name} response: {body}")]

        payload = _json_body(response)
        if name == "COUNT":
            if not isinstance(payload.get("count"), int):
                raise TransportFailure(f"COUNT response has no integer count: {payload}")
            return [dialect.render_count(payload["count"])]

        try:
            return self._render_payload(name, payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise TransportFailure(f"ESP32 sent a malformed {name} response: {payload}") from exc

    def _render_payload(self, name: str, payload: dict[str, Any]) -> list[str]:
        dialect = self.dialect
        if name == "ENROLL":
            lines = [str(m) for m in payload.get("messages") or []]
            if payload.get("template"):
                lines.append(dialect.render_template(str(payload["template"])))
            if str(payload.get("status", "")).lower() == "success" and payload.get("id") is not None:
                lines.append(dialect.render_enrolled(int(payload["id"])))
            else:
                lines.append(dialect.render_error(str(payload.get("error") or "Unknown error")))
            return lines

        if name == "VERIFY":
            lines = [str(payload["message"])] if payload.get("message") else []
            if payload.get("found") is True:
                lines.append(
                    dialect.render_match(int(payload["id"]), int(payload.get("confidence") or 0))
                )
            else:
                lines.append(dialect.render_no_match())
            return lines

        if name == "CAPTURE":
            if payload.get("success") is True and payload.get("template"):
                return [dialect.render_template(str(payload["template"]))]
            return [dialect.render_error(str(payload.get("message") or "Capture failed"))]

        # SCAN
        if payload.get("success") is True and payload.get("uid"):
            return [dialect.render_card(str(payload["uid"]))]
        return [dialect.render_error(str(payload.get("message") or "No card detected"))]


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise TransportFailure(f"ESP32 sent a non-JSON body: {response.text[:200]}") from exc
    if not isinstance(payload, dict):
        raise TransportFailure(f"ESP32 sent an unexpected JSON document: {payload!r}")
    return payload
