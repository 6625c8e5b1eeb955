"""
Field-level validation errors.

Errors accumulate per attribute name, mirroring how form and model layers
report invalid input. They are attached to the record's SQLAlchemy instance
state, so any mapped object can carry them without a mixin.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from sqlalchemy import inspect

_ERRORS_KEY = "tenantguard.errors"


class Errors:
    """
    Collection of validation messages keyed by attribute name.

    Example:
        >>> errors = Errors()
        >>> errors.add("name", "has already been taken")
        >>> errors["name"]
        ['has already been taken']
        >>> errors.full_messages()
        ['name has already been taken']
        >>> bool(errors)
        True
    """

    def __init__(self) -> None:
        self._messages: dict[str, list[str]] = {}

    def add(self, attribute: str, message: str) -> None:
        self._messages.setdefault(attribute, []).append(message)

    def __getitem__(self, attribute: str) -> list[str]:
        return list(self._messages.get(attribute, []))

    def __contains__(self, attribute: object) -> bool:
        return attribute in self._messages

    def __iter__(self) -> Iterator[tuple[str, str]]:
        for attribute, messages in self._messages.items():
            for message in messages:
                yield attribute, message

    def __len__(self) -> int:
        return sum(len(messages) for messages in self._messages.values())

    def __bool__(self) -> bool:
        return bool(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def full_messages(self) -> list[str]:
        return [f"{attribute} {message}" for attribute, message in self]

    def as_dict(self) -> dict[str, list[str]]:
        return {attribute: list(messages) for attribute, messages in self._messages.items()}

    def __repr__(self) -> str:
        return f"Errors({self.as_dict()!r})"


def errors_for(record: Any) -> Errors:
    """Return the errors attached to ``record``, creating them if needed."""
    info = inspect(record).info
    errors = info.get(_ERRORS_KEY)
    if errors is None:
        errors = info[_ERRORS_KEY] = Errors()
    return errors  # type: ignore[no-any-return]


__all__ = ["Errors", "errors_for"]
