"""Host-visible resource state and its on-disk form."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any


class LifecyclePhase(StrEnum):
    NOT_STARTED = "not_started"
    IN_FLIGHT = "in_flight"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass
class ResourceState:
    """What the host persists for one topic.

    An empty ``id`` means the topic does not exist. ``unknown`` is set when an
    operation was interrupted after its remote side effect may have happened.
    """

    id: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    phase: LifecyclePhase = LifecyclePhase.NOT_STARTED
    unknown: bool = False

    @property
    def exists(self) -> bool:
        return bool(self.id)

    @property
    def bootstrap_server(self) -> str | None:
        return self.attributes.get("bootstrap_server")

    def clear(self) -> None:
        self.id = ""
        self.attributes = {}

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceState:
        return cls(
            id=data.get("id", ""),
            attributes=dict(data.get("attributes") or {}),
            phase=LifecyclePhase(data.get("phase", LifecyclePhase.NOT_STARTED)),
            unknown=bool(data.get("unknown", False)),
        )


def load_state(path: str | Path) -> ResourceState:
    """Load a state file; a missing file is an empty state."""
    p = Path(path)
    if not p.exists():
        return ResourceState()
    with p.open() as f:
        data = json.load(f)
    if not isinstance(data, dict):
        msg = f"Expected a JSON object in state file {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return ResourceState.from_dict(data)


def save_state(state: ResourceState, path: str | Path) -> None:
    p = Path(path)
    tmp = p.with_suffix(p.suffix + ".tmp")
    with tmp.open("w") as f:
        json.dump(state.to_dict(), f, indent=2, sort_keys=True)
        f.write("\n")
    tmp.replace(p)
