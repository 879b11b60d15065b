"""Entity identifiers: client-minted placeholders versus server-confirmed ids.

An optimistic entity starts life under a :class:`TemporaryId` (``temp-`` for
in-flight mutations, ``local-`` for records created while offline). The only
legal transition is :meth:`TemporaryId.remap` to a :class:`PermanentId`; a
permanent id can never carry a placeholder prefix, so a placeholder can never
be mistaken for (or reused as) a confirmed identifier.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Final, Union

TEMP_PREFIX: Final[str] = "temp"
LOCAL_PREFIX: Final[str] = "local"
_PLACEHOLDER_PREFIXES: Final[tuple[str, ...]] = (f"{TEMP_PREFIX}-", f"{LOCAL_PREFIX}-")


def is_temporary(raw: str) -> bool:
    return raw.startswith(_PLACEHOLDER_PREFIXES)


@dataclass(frozen=True)
class PermanentId:
    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("Permanent ids must not be empty")
        if is_temporary(self.value):
            raise ValueError(f"{self.value!r} is a placeholder and cannot be a permanent id")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TemporaryId:
    token: str

    def __post_init__(self) -> None:
        if not is_temporary(self.token):
            raise ValueError(f"{self.token!r} does not carry a placeholder prefix")

    @classmethod
    def new(cls, prefix: str = TEMP_PREFIX) -> "TemporaryId":
        if prefix not in (TEMP_PREFIX, LOCAL_PREFIX):
            raise ValueError(f"Unknown placeholder prefix {prefix!r}")
        return cls(f"{prefix}-{uuid.uuid4()}")

    @property
    def is_offline(self) -> bool:
        return self.token.startswith(f"{LOCAL_PREFIX}-")

    def remap(self, server_id: str) -> PermanentId:
        return PermanentId(server_id)

    def __str__(self) -> str:
        return self.token


EntityId = Union[TemporaryId, PermanentId]


def parse_entity_id(raw: str) -> EntityId:
    if is_temporary(raw):
        return TemporaryId(raw)
    return PermanentId(raw)


def new_permanent_id() -> PermanentId:
    return PermanentId(str(uuid.uuid4()))


__all__ = [
    "EntityId",
    "LOCAL_PREFIX",
    "PermanentId",
    "TEMP_PREFIX",
    "TemporaryId",
    "is_temporary",
    "new_permanent_id",
    "parse_entity_id",
]
