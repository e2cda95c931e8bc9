"""Command catalog shared by every dialect."""

from __future__ import annotations

from sensorctl.core.model import Command, CommandTier, Outcome

PROGRESSIVE_COMMANDS = frozenset({"ENROLL", "VERIFY", "CAPTURE"})


def ping() -> Command:
    return Command("PING", CommandTier.QUICK, frozenset({Outcome.PONG}), retryable=True)


def count() -> Command:
    return Command("COUNT", CommandTier.QUICK, frozenset({Outcome.COUNT}), retryable=True)


def delete(template_id: int) -> Command:
    return Command(
        "DELETE",
        CommandTier.QUICK,
        frozenset({Outcome.SUCCESS}),
        argument=str(template_id),
    )


def empty() -> Command:
    return Command("EMPTY", CommandTier.QUICK, frozenset({Outcome.SUCCESS}))


def scan_card() -> Command:
    return Command("SCAN", CommandTier.QUICK, frozenset({Outcome.CARD}))


def enroll() -> Command:
    # A TEMPLATE: line may precede the id; it is kept as a continuation.
    return Command(
        "ENROLL",
        CommandTier.PROGRESSIVE,
        frozenset({Outcome.NUMERIC_ID, Outcome.SUCCESS}),
    )


def verify() -> Command:
    return Command(
        "VERIFY",
        CommandTier.PROGRESSIVE,
        frozenset({Outcome.MATCH, Outcome.NOT_FOUND}),
    )


def capture() -> Command:
    return Command(
        "CAPTURE",
        CommandTier.PROGRESSIVE,
        frozenset({Outcome.TEMPLATE_PAYLOAD}),
    )
