"""Confirmation gate for destructive and data-overwriting steps.

Two independent checks, composed differently by each operation:

- ``affirm()``: a yes/no question ("use this artifact?", "backup X then
  overwrite Y?").
- ``confirm_database_name()``: the operator types the target database
  name; only exact, case-sensitive equality passes.

Both raise ``ConfirmationError`` before any side effect takes place.
Prompts go through an injectable ``Confirmer`` so tests can supply
canned answers.
"""

import logging
from collections.abc import Sequence
from enum import Enum
from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm, IntPrompt

from pg_backup_restore.config.models import Environment, GlobalSettings
from pg_backup_restore.errors import ConfirmationError

logger = logging.getLogger(__name__)


class Confirmer(Protocol):
    """Source of operator answers."""

    def confirm(self, prompt: str) -> bool:
        """Ask a yes/no question."""
        ...

    def ask(self, prompt: str) -> str:
        """Ask for free text (returned verbatim, no stripping)."""
        ...

    def choose(self, prompt: str, options: Sequence[str]) -> int:
        """Ask the operator to pick one option; returns its 0-based index."""
        ...


class ConsoleConfirmer:
    """``Confirmer`` backed by the terminal via ``rich`` prompts."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    def confirm(self, prompt: str) -> bool:
        return Confirm.ask(prompt, console=self._console, default=False)

    def ask(self, prompt: str) -> str:
        return self._console.input(prompt)

    def choose(self, prompt: str, options: Sequence[str]) -> int:
        for i, option in enumerate(options, start=1):
            self._console.print(f"  {i}) {option}")
        while True:
            number = IntPrompt.ask(prompt, console=self._console)
            if 1 <= number <= len(options):
                return number - 1
            self._console.print("[red]Invalid selection.[/red]")


class RestorePolicy(str, Enum):
    """Which confirmations a restore asks for.

    - ``INTERACTIVE``: affirm the artifact (or pick one), then type the
      target database name.
    - ``LATEST``: take the latest artifact without asking, still type the
      target database name.
    - ``UNATTENDED``: take the latest artifact, no prompts at all.
    """

    INTERACTIVE = "interactive"
    LATEST = "latest"
    UNATTENDED = "unattended"

    @property
    def uses_latest(self) -> bool:
        return self is not RestorePolicy.INTERACTIVE

    @property
    def requires_name_confirmation(self) -> bool:
        return self is not RestorePolicy.UNATTENDED


def policy_for(latest: bool, assume_yes: bool, settings: GlobalSettings) -> RestorePolicy:
    """Map restore flags to a ``RestorePolicy``.

    ``--latest`` alone skips the artifact question but keeps the typed
    database-name check, unless ``latest_requires_confirmation = false`` in
    settings, which makes ``--latest`` fully unattended.  ``--latest --yes``
    is always unattended.  ``--yes`` without ``--latest`` has no effect:
    picking an artifact interactively implies an operator at the terminal.
    """
    if not latest:
        return RestorePolicy.INTERACTIVE
    if assume_yes or not settings.latest_requires_confirmation:
        return RestorePolicy.UNATTENDED
    return RestorePolicy.LATEST


def affirm(confirmer: Confirmer, prompt: str) -> None:
    """Require a "yes" answer.

    Raises:
        ConfirmationError: On a negative answer.
    """
    if not confirmer.confirm(prompt):
        logger.info(f"Declined: {prompt}")
        raise ConfirmationError("Operation cancelled by operator.")


def confirm_database_name(confirmer: Confirmer, environment: Environment) -> None:
    """Require the operator to type the target database name exactly.

    Raises:
        ConfirmationError: If the answer differs in any way (case and
            whitespace included).
    """
    expected = environment.database
    answer = confirmer.ask(
        f"Type the database name ('{expected}') to confirm, or anything else to abort: "
    )
    if answer != expected:
        logger.warning(
            f"Confirmation failed for '{environment.name}': expected '{expected}'"
        )
        raise ConfirmationError(
            f"Confirmation failed. Typed name does not match '{expected}'."
        )
    logger.info(f"Confirmation accepted for '{environment.name}' ({expected})")
