"""Change classification for topic updates.

Decides, per attribute, whether an old -> new desired-state change can be
applied in place or forces destroy-and-recreate:

- ``name`` and ``bootstrap_server`` are immutable.
- ``partitions`` may only grow; a decrease forces replacement.
- ``replication_factor`` changes in place only when the cluster supports
  partition reassignment (Kafka >= 2.4.0); otherwise it forces replacement.
- ``config`` always changes in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from topic_provider.config.models import TopicSpec
from topic_provider.topics.model import config_equal

ATTRIBUTES = ("name", "partitions", "replication_factor", "config", "bootstrap_server")


@dataclass
class DiffResult:
    forces_replace: dict[str, bool] = field(
        default_factory=lambda: dict.fromkeys(ATTRIBUTES, False)
    )
    changed: set[str] = field(default_factory=set)
    update_config: bool = False
    alter_replication_factor: bool = False
    add_partitions: bool = False

    @property
    def requires_replace(self) -> bool:
        return any(self.forces_replace.values())

    @property
    def replace_fields(self) -> list[str]:
        return [name for name in ATTRIBUTES if self.forces_replace[name]]

    @property
    def has_changes(self) -> bool:
        return bool(self.changed)


def classify_change(
    old: TopicSpec,
    new: TopicSpec,
    *,
    can_alter_replication_factor: bool | None = None,
) -> DiffResult:
    """Classify an update from *old* to *new*.

    *can_alter_replication_factor* is the capability probe's answer and is
    only consulted when the replication factor changed; ``None`` there is
    treated as unsupported.
    """
    result = DiffResult()

    if old.name != new.name:
        result.changed.add("name")
        result.forces_replace["name"] = True

    if old.bootstrap_server != new.bootstrap_server:
        result.changed.add("bootstrap_server")
        result.forces_replace["bootstrap_server"] = True

    if old.partitions != new.partitions:
        result.changed.add("partitions")
        if new.partitions < old.partitions:
            result.forces_replace["partitions"] = True
        else:
            result.add_partitions = True

    if old.replication_factor != new.replication_factor:
        result.changed.add("replication_factor")
        if can_alter_replication_factor:
            result.alter_replication_factor = True
        else:
            result.forces_replace["replication_factor"] = True

    if not config_equal(old.config, new.config):
        result.changed.add("config")
        result.update_config = True

    return result
