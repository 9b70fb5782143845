from __future__ import annotations


class MnemeError(Exception):
    pass


class NotFoundError(MnemeError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class StoreError(MnemeError):
    """A store write failed and was rolled back."""


class HookInputError(MnemeError):
    """Hook stdin was not valid JSON for the expected event."""
