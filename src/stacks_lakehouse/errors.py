"""Error taxonomy shared across the pipeline components."""

from __future__ import annotations


class LakehouseError(Exception):
    """Base exception for all pipeline errors."""


class ParseError(LakehouseError):
    """Raised when a single raw event does not fit the expected shape."""


class DiscoveryConflict(LakehouseError):
    """Raised when a catalogue identifier already exists."""

    def __init__(self, identifier: str) -> None:
        super().__init__(f"Identifier already catalogued: {identifier}")
        self.identifier = identifier


class ClassificationInconclusive(LakehouseError):
    """Raised when there is not enough evidence to assign a label."""


class RemoteCallFailure(LakehouseError):
    """Raised when a single remote call fails."""


class RemoteCallTimeout(RemoteCallFailure):
    """Raised when a single remote call exceeds its timeout."""


class StepFailure(LakehouseError):
    """Raised when a pipeline step fails outright."""

    def __init__(self, step: str, error: BaseException | str) -> None:
        message = str(error) or type(error).__name__
        super().__init__(f"Step '{step}' failed: {message}")
        self.step = step
        self.error = error


class ConfigurationError(LakehouseError):
    """Raised when required configuration is missing or invalid."""
