"""Topic lifecycle operations against the remote operator.

Each operation moves :attr:`ResourceState.phase` from ``not_started`` through
``in_flight`` to ``settled`` or ``failed``. Remote side effects are confirmed
by reading the topic back; the waits use the per-operation policies in
:class:`~topic_provider.config.models.TimeoutsConfig`.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import structlog

from topic_provider.config.models import ProviderConfig, TopicSpec
from topic_provider.errors import (
    NotFoundError,
    RemoteOperationError,
    ReplacementRequiredError,
    TopicProviderError,
    ValidationError,
)
from topic_provider.remote.invoker import OperationKind, Outcome, RemoteInvoker
from topic_provider.remote.waiter import PENDING, wait_for
from topic_provider.state import LifecyclePhase, ResourceState
from topic_provider.topics.diff import DiffResult, classify_change
from topic_provider.topics.model import (
    Topic,
    config_changes,
    parse_desired_state,
)

logger = structlog.get_logger()

PRESENT = "present"
ABSENT = "absent"

DesiredState = TopicSpec | Mapping[str, Any]


def _version_tuple(version: str) -> tuple[int, ...]:
    """``"2.8.1"`` -> ``(2, 8, 1)``; suffixes like ``.tiered`` are ignored."""
    return tuple(int(p) for p in re.findall(r"\d+", version)[:3])


def _raise_for_outcome(outcome: Outcome, message: str) -> None:
    if outcome.not_found:
        raise NotFoundError(
            message,
            kind=outcome.kind.value,
            status_code=outcome.status_code,
            payload=outcome.payload,
        )
    raise RemoteOperationError(
        message,
        kind=outcome.kind.value,
        status_code=outcome.status_code,
        payload=outcome.payload,
    )


class TopicReconciler:
    """Create / read / update / delete a topic through a :class:`RemoteInvoker`.

    The invoker is stateless and may be shared between reconcilers. Callers
    must not run two operations against the same topic id concurrently.
    """

    def __init__(
        self, invoker: RemoteInvoker, config: ProviderConfig | None = None
    ) -> None:
        self._invoker = invoker
        self._config = config or ProviderConfig()
        self._timeouts = self._config.timeouts

    # -- Lifecycle -------------------------------------------------------------

    async def create(self, desired: DesiredState, state: ResourceState) -> None:
        """Create the topic and wait until a read can observe it.

        On failure no id is recorded. If the caller cancels, the create may
        already have happened remotely: the id is kept and the state is
        flagged ``unknown`` until a :meth:`read` settles it.
        """
        with self._track(state, "create"):
            spec = parse_desired_state(desired)
            topic = Topic.from_desired_state(spec)
            log = logger.bind(topic=topic.name)

            try:
                observed = await self._create_and_wait(topic, spec.bootstrap_server)
            except asyncio.CancelledError:
                # createTopic may have run; keep the id so a read can settle it
                state.id = topic.name
                state.attributes = spec.model_dump()
                raise
            state.id = topic.name
            state.attributes = observed.to_desired_state(spec.bootstrap_server)
            log.info("topic.created", partitions=observed.partitions)

    async def _create_and_wait(self, topic: Topic, bootstrap_server: str) -> Topic:
        log = logger.bind(topic=topic.name)
        outcome = await self._invoker.invoke(
            OperationKind.CREATE_TOPIC,
            {**topic.to_parameters(), "bootstrap_server": bootstrap_server},
        )
        if outcome.failed:
            log.error(
                "topic.create_failed",
                status=outcome.status_code,
                payload=outcome.payload,
            )
            _raise_for_outcome(outcome, f"error creating topic {topic.name!r}")
        if not outcome.settled:
            # The request may still have been applied; confirm by reading.
            log.warning("topic.create_unconfirmed", note=outcome.note)

        return await wait_for(
            self._watch(
                topic.name,
                bootstrap_server,
                lambda t: "created" if t is not None else PENDING,
            ),
            {"created"},
            policy=self._timeouts.create,
            description=f"topic {topic.name!r} to be created",
        )

    async def read(self, state: ResourceState) -> None:
        """Refresh ``state`` from the remote side.

        A topic that no longer exists clears the id; that is not an error.
        """
        with self._track(state, "read"):
            await self._refresh(state)

    async def update(
        self,
        old: DesiredState,
        new: DesiredState,
        state: ResourceState,
        diff: DiffResult | None = None,
    ) -> None:
        """Apply an in-place update, then re-read the topic.

        Sub-steps run in order (config, replication factor, partitions) and
        the first failure aborts the rest. The raised error keeps its type and
        carries a note naming the failed step and what was already applied.
        Pass the *diff* returned by :meth:`custom_diff` to avoid classifying
        (and probing the cluster) twice.
        """
        with self._track(state, "update"):
            if not state.exists:
                msg = "cannot update a topic that has no id; create it first"
                raise ValidationError(msg)
            old_spec = parse_desired_state(old)
            new_spec = parse_desired_state(new)
            if diff is None:
                diff = await self.custom_diff(
                    old_spec, new_spec, resource_id=state.id
                )
            if diff.requires_replace:
                raise ReplacementRequiredError(new_spec.name, diff.replace_fields)

            log = logger.bind(topic=state.id)
            steps: list[tuple[str, Callable[[], Any]]] = []
            if diff.update_config:
                steps.append(
                    ("update_config", lambda: self._update_config(old_spec, new_spec))
                )
            if diff.alter_replication_factor:
                log.info(
                    "topic.replication_factor_changing",
                    old=old_spec.replication_factor,
                    new=new_spec.replication_factor,
                )
                steps.append(
                    (
                        "alter_replication_factor",
                        lambda: self._alter_replication_factor(new_spec),
                    )
                )
            if diff.add_partitions:
                log.info(
                    "topic.partitions_changing",
                    old=old_spec.partitions,
                    new=new_spec.partitions,
                )
                steps.append(("add_partitions", lambda: self._add_partitions(new_spec)))

            applied: list[str] = []
            for step_name, step in steps:
                try:
                    await step()
                except TopicProviderError as exc:
                    exc.add_note(
                        f"update of topic {state.id!r} failed at step {step_name!r}; "
                        f"already applied: {', '.join(applied) or 'none'}"
                    )
                    log.error(
                        "topic.update_step_failed",
                        step=step_name,
                        applied=applied,
                        error=str(exc),
                    )
                    raise
                applied.append(step_name)
                log.info("topic.update_step_applied", step=step_name)

            await self._refresh(state, bootstrap_server=new_spec.bootstrap_server)

    async def delete(self, state: ResourceState) -> None:
        """Delete the topic and wait until a read reports it absent."""
        with self._track(state, "delete"):
            name = state.id
            bootstrap_server = self._require_bootstrap_server(state)
            log = logger.bind(topic=name)

            outcome = await self._invoker.invoke(
                OperationKind.DELETE_TOPIC,
                {"name": name, "bootstrap_server": bootstrap_server},
            )
            if outcome.not_found:
                log.info("topic.already_deleted")
                state.clear()
                return
            if outcome.failed:
                _raise_for_outcome(outcome, f"error deleting topic {name!r}")

            log.debug("topic.delete_waiting")
            await wait_for(
                self._watch(
                    name,
                    bootstrap_server,
                    lambda t: "deleted" if t is None else PENDING,
                ),
                {"deleted"},
                policy=self._timeouts.delete,
                description=f"topic {name!r} to be deleted",
            )
            state.clear()
            log.info("topic.deleted")

    async def replace(self, new: DesiredState, state: ResourceState) -> None:
        """Destroy then recreate, for changes :meth:`custom_diff` cannot apply."""
        new_spec = parse_desired_state(new)
        if state.exists:
            await self.delete(state)
        await self.create(new_spec, state)

    # -- Diff classification ---------------------------------------------------

    async def custom_diff(
        self,
        old: DesiredState,
        new: DesiredState,
        *,
        resource_id: str = "",
    ) -> DiffResult:
        """Classify a planned change before :meth:`update` runs.

        Creation (no id yet) has nothing to classify. The only remote call is
        the capability probe, made when the replication factor changes.
        """
        if not resource_id:
            return DiffResult()
        old_spec = parse_desired_state(old)
        new_spec = parse_desired_state(new)

        can_alter: bool | None = None
        if old_spec.replication_factor != new_spec.replication_factor:
            can_alter = await self.can_alter_replication_factor(
                old_spec.bootstrap_server
            )
            if not can_alter:
                logger.info(
                    "topic.replication_factor_needs_replace",
                    topic=resource_id,
                    min_version=self._config.min_replication_factor_alter_version,
                )

        result = classify_change(
            old_spec, new_spec, can_alter_replication_factor=can_alter
        )
        if result.requires_replace:
            logger.info(
                "topic.forces_replace", topic=resource_id, fields=result.replace_fields
            )
        return result

    async def can_alter_replication_factor(self, bootstrap_server: str) -> bool:
        """Capability probe: does the cluster support in-place RF changes?"""
        info = await wait_for(
            self._settled(
                OperationKind.DESCRIBE_CLUSTER, {"bootstrap_server": bootstrap_server}
            ),
            {"settled"},
            policy=self._timeouts.read,
            description="cluster description",
        )
        if isinstance(info, Mapping):
            if "can_alter_replication_factor" in info:
                return bool(info["can_alter_replication_factor"])
            version = info.get("kafka_version") or info.get("version")
        else:
            version = info
        if not isinstance(version, str) or not version:
            raise RemoteOperationError(
                "cluster description has no kafka_version",
                kind=OperationKind.DESCRIBE_CLUSTER.value,
                payload=info,
            )
        minimum = self._config.min_replication_factor_alter_version
        return _version_tuple(version) >= _version_tuple(minimum)

    # -- Data source / import --------------------------------------------------

    async def list_topics(self, bootstrap_server: str) -> list[str]:
        body = await wait_for(
            self._settled(
                OperationKind.LIST_TOPICS, {"bootstrap_server": bootstrap_server}
            ),
            {"settled"},
            policy=self._timeouts.read,
            description="topic list",
        )
        names = body.get("topics", []) if isinstance(body, Mapping) else body
        if not isinstance(names, list):
            raise RemoteOperationError(
                "unexpected listTopics body",
                kind=OperationKind.LIST_TOPICS.value,
                payload=body,
            )
        return sorted(
            str(n["name"]) if isinstance(n, Mapping) else str(n) for n in names
        )

    async def lookup(self, name: str, bootstrap_server: str) -> Topic:
        """Read one topic by name; raises :class:`NotFoundError` if absent."""
        topic = await self._read_topic(name, bootstrap_server)
        if topic is None:
            raise NotFoundError(
                f"topic {name!r} not found",
                kind=OperationKind.READ_TOPIC.value,
                status_code=404,
            )
        return topic

    async def import_state(
        self, resource_id: str, bootstrap_server: str
    ) -> ResourceState:
        """Adopt an existing topic by id (its name)."""
        state = ResourceState(
            id=resource_id, attributes={"bootstrap_server": bootstrap_server}
        )
        await self.read(state)
        if not state.exists:
            raise NotFoundError(
                f"cannot import topic {resource_id!r}: not found",
                kind=OperationKind.READ_TOPIC.value,
                status_code=404,
            )
        return state

    # -- Sub-updates -----------------------------------------------------------

    async def _update_config(self, old: TopicSpec, new: TopicSpec) -> None:
        outcome = await self._invoker.invoke(
            OperationKind.UPDATE_TOPIC,
            {
                "name": new.name,
                "bootstrap_server": new.bootstrap_server,
                "config": dict(new.config),
                "changes": config_changes(old.config, new.config),
            },
        )
        if outcome.failed:
            _raise_for_outcome(outcome, f"error updating config of topic {new.name!r}")
        if not outcome.settled:
            raise RemoteOperationError(
                f"config update of topic {new.name!r} was not confirmed: "
                f"{outcome.note}",
                kind=outcome.kind.value,
                status_code=outcome.status_code,
                payload=outcome.payload,
            )

    async def _alter_replication_factor(self, new: TopicSpec) -> None:
        outcome = await self._invoker.invoke(
            OperationKind.ALTER_REPLICATION_FACTOR,
            {
                "name": new.name,
                "bootstrap_server": new.bootstrap_server,
                "replication_factor": new.replication_factor,
            },
        )
        if outcome.failed:
            _raise_for_outcome(
                outcome, f"error altering replication factor of topic {new.name!r}"
            )
        await wait_for(
            self._watch(
                new.name,
                new.bootstrap_server,
                self._expect(new.name, "replication_factor", new.replication_factor),
            ),
            {"settled"},
            policy=self._timeouts.update,
            description=(
                f"topic {new.name!r} replication factor "
                f"to reach {new.replication_factor}"
            ),
        )

    async def _add_partitions(self, new: TopicSpec) -> None:
        outcome = await self._invoker.invoke(
            OperationKind.ADD_PARTITIONS,
            {
                "name": new.name,
                "bootstrap_server": new.bootstrap_server,
                "partitions": new.partitions,
            },
        )
        if outcome.failed:
            _raise_for_outcome(
                outcome, f"error adding partitions to topic {new.name!r}"
            )
        await wait_for(
            self._watch(
                new.name,
                new.bootstrap_server,
                self._expect(new.name, "partitions", new.partitions),
            ),
            {"settled"},
            policy=self._timeouts.update,
            description=f"topic {new.name!r} to reach {new.partitions} partitions",
        )

    # -- Helpers ---------------------------------------------------------------

    @contextmanager
    def _track(self, state: ResourceState, operation: str) -> Iterator[None]:
        state.phase = LifecyclePhase.IN_FLIGHT
        try:
            yield
        except asyncio.CancelledError:
            # Remote side effect may already have happened
            state.unknown = True
            logger.warning(
                "topic.operation_cancelled", operation=operation, topic=state.id
            )
            raise
        except Exception:
            state.phase = LifecyclePhase.FAILED
            raise
        state.phase = LifecyclePhase.SETTLED
        state.unknown = False

    @staticmethod
    def _require_bootstrap_server(state: ResourceState) -> str:
        if not state.exists:
            msg = "topic has no id"
            raise ValidationError(msg)
        bootstrap_server = state.bootstrap_server
        if not bootstrap_server:
            msg = f"state of topic {state.id!r} has no bootstrap_server"
            raise ValidationError(msg)
        return bootstrap_server

    async def _refresh(
        self, state: ResourceState, bootstrap_server: str | None = None
    ) -> None:
        bootstrap_server = bootstrap_server or self._require_bootstrap_server(state)
        topic = await self._read_topic(state.id, bootstrap_server)
        if topic is None:
            logger.info("topic.gone", topic=state.id)
            state.clear()
            return
        state.attributes = topic.to_desired_state(bootstrap_server)
        logger.debug("topic.read", topic=state.id, attributes=state.attributes)

    async def _read_topic(
        self, name: str, bootstrap_server: str
    ) -> Topic | None:
        return await wait_for(
            self._watch(
                name, bootstrap_server, lambda t: ABSENT if t is None else PRESENT
            ),
            {PRESENT, ABSENT},
            policy=self._timeouts.read,
            description=f"topic {name!r} to be read",
        )

    def _watch(
        self,
        name: str,
        bootstrap_server: str,
        classify: Callable[[Topic | None], str],
    ) -> Callable[[], Any]:
        """Build a poll function that reads *name* and classifies the result.

        An undecodable response is reported as pending; a definitive failure
        other than "not found" raises.
        """

        async def _poll() -> tuple[Any, str]:
            outcome = await self._invoker.invoke(
                OperationKind.READ_TOPIC,
                {"name": name, "bootstrap_server": bootstrap_server},
            )
            if outcome.not_found:
                return None, classify(None)
            if outcome.failed:
                _raise_for_outcome(outcome, f"error reading topic {name!r}")
            if not outcome.settled:
                logger.debug("topic.read_pending", topic=name, note=outcome.note)
                return outcome.payload, PENDING
            try:
                topic = Topic.from_payload(outcome.payload)
            except ValueError as exc:
                logger.warning("topic.read_undecodable", topic=name, error=str(exc))
                return outcome.payload, PENDING
            state = classify(topic)
            return (topic if state != PENDING else outcome.payload), state

        return _poll

    @staticmethod
    def _expect(
        name: str, attribute: str, value: int
    ) -> Callable[[Topic | None], str]:
        def _classify(topic: Topic | None) -> str:
            if topic is None:
                raise NotFoundError(
                    f"topic {name!r} disappeared while waiting for {attribute}",
                    kind=OperationKind.READ_TOPIC.value,
                    status_code=404,
                )
            return "settled" if getattr(topic, attribute) == value else PENDING

        return _classify

    def _settled(
        self, kind: OperationKind, parameters: dict[str, Any]
    ) -> Callable[[], Any]:
        async def _poll() -> tuple[Any, str]:
            outcome = await self._invoker.invoke(kind, parameters)
            if outcome.failed:
                _raise_for_outcome(outcome, f"{kind.value} failed")
            return outcome.payload, outcome.state.value

        return _poll
