"""Canonical in-memory representation of a managed Kafka topic."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import pydantic

from topic_provider.config.models import TopicSpec
from topic_provider.errors import ValidationError


@dataclass(slots=True, eq=False)
class Topic:
    """A topic as the remote operator sees it.

    ``config`` values may be ``None`` to mark a key as explicitly unset, which
    is distinct from the key being absent and from an empty string.
    """

    name: str
    partitions: int
    replication_factor: int
    config: dict[str, str | None] = field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Topic):
            return NotImplemented
        return topics_equal(self, other)

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def from_desired_state(cls, attrs: TopicSpec | Mapping[str, Any]) -> Topic:
        """Build a Topic from a host-supplied desired state.

        Raises :class:`ValidationError` before anything is sent remotely when
        the attribute bag is malformed.
        """
        spec = parse_desired_state(attrs)
        return cls(
            name=spec.name,
            partitions=spec.partitions,
            replication_factor=spec.replication_factor,
            config=dict(spec.config),
        )

    @classmethod
    def from_payload(cls, body: Any) -> Topic:
        """Decode the body of a successful ``readTopic`` response.

        Accepts both snake_case and the camelCase keys some operator builds
        return (``replicationFactor``, ``partitionCount``).
        """
        if not isinstance(body, Mapping):
            msg = f"expected a topic mapping, got {type(body).__name__}"
            raise ValueError(msg)
        topic = body.get("topic", body)
        try:
            name = topic["name"]
            partitions = topic.get("partitions", topic.get("partitionCount"))
            rf = topic.get("replication_factor", topic.get("replicationFactor"))
            raw_config = topic.get("config") or {}
            return cls(
                name=str(name),
                partitions=int(partitions),
                replication_factor=int(rf),
                config={
                    str(k): None if v is None else str(v)
                    for k, v in raw_config.items()
                },
            )
        except (KeyError, TypeError, AttributeError) as exc:
            msg = f"malformed topic payload: {body!r}"
            raise ValueError(msg) from exc

    def to_desired_state(self, bootstrap_server: str) -> dict[str, Any]:
        """Re-derive the host attribute bag for this topic."""
        return {
            "name": self.name,
            "partitions": self.partitions,
            "replication_factor": self.replication_factor,
            "config": dict(self.config),
            "bootstrap_server": bootstrap_server,
        }

    def to_parameters(self) -> dict[str, Any]:
        """Serialize for a remote operator request."""
        return {
            "name": self.name,
            "partitions": self.partitions,
            "replication_factor": self.replication_factor,
            "config": dict(self.config),
        }


def config_equal(a: Mapping[str, str | None], b: Mapping[str, str | None]) -> bool:
    """Compare two topic configs key-for-key, presence included."""
    if a.keys() != b.keys():
        return False
    return all(a[k] == b[k] for k in a)


def topics_equal(a: Topic, b: Topic) -> bool:
    return (
        a.name == b.name
        and a.partitions == b.partitions
        and a.replication_factor == b.replication_factor
        and config_equal(a.config, b.config)
    )


def config_changes(
    old: Mapping[str, str | None], new: Mapping[str, str | None]
) -> dict[str, str | None]:
    """Return the keys whose value differs; removed keys map to ``None``."""
    changes: dict[str, str | None] = {}
    for key in old.keys() | new.keys():
        if key not in new:
            changes[key] = None
        elif key not in old or old[key] != new[key]:
            changes[key] = new[key]
    return changes


def parse_desired_state(attrs: TopicSpec | Mapping[str, Any]) -> TopicSpec:
    """Validate a host attribute bag once, at the boundary."""
    if isinstance(attrs, TopicSpec):
        return attrs
    try:
        return TopicSpec.model_validate(dict(attrs))
    except pydantic.ValidationError as exc:
        msg = f"invalid desired state for topic {attrs.get('name')!r}:\n{exc}"
        raise ValidationError(msg) from exc
