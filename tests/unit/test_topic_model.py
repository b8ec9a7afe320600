"""Unit tests for the canonical Topic representation."""

from __future__ import annotations

from typing import Any

import pytest
from scripted import BOOTSTRAP

from topic_provider.config.models import TopicSpec
from topic_provider.errors import ValidationError
from topic_provider.topics.model import (
    Topic,
    config_changes,
    config_equal,
    topics_equal,
)


class TestFromDesiredState:
    def test_builds_topic_from_mapping(self, desired: dict[str, Any]):
        topic = Topic.from_desired_state(desired)
        assert topic == Topic("orders", 3, 2, {})

    def test_builds_topic_from_spec(self, desired: dict[str, Any]):
        spec = TopicSpec.model_validate(desired)
        assert Topic.from_desired_state(spec).name == "orders"

    @pytest.mark.parametrize("field", ["partitions", "replication_factor"])
    def test_rejects_values_below_one(self, desired: dict[str, Any], field: str):
        desired[field] = 0
        with pytest.raises(ValidationError, match=field):
            Topic.from_desired_state(desired)

    def test_rejects_unknown_attributes(self, desired: dict[str, Any]):
        desired["retention"] = "7d"
        with pytest.raises(ValidationError):
            Topic.from_desired_state(desired)

    def test_validation_error_is_a_value_error(self, desired: dict[str, Any]):
        del desired["name"]
        with pytest.raises(ValueError):
            Topic.from_desired_state(desired)

    def test_yaml_scalars_become_strings(self, desired: dict[str, Any]):
        desired["config"] = {
            "retention.ms": 86400000,
            "unclean.leader.election.enable": False,
            "cleanup.policy": "compact",
            "segment.ms": None,
        }
        topic = Topic.from_desired_state(desired)
        assert topic.config == {
            "retention.ms": "86400000",
            "unclean.leader.election.enable": "false",
            "cleanup.policy": "compact",
            "segment.ms": None,
        }

    def test_rederivation_is_idempotent(self, desired: dict[str, Any]):
        desired["config"] = {"cleanup.policy": "compact", "segment.ms": None}
        topic = Topic.from_desired_state(desired)
        again = Topic.from_desired_state(topic.to_desired_state(BOOTSTRAP))
        assert again == topic
        assert topic.to_desired_state(BOOTSTRAP) == desired


class TestEquality:
    def test_reflexive(self):
        topic = Topic("orders", 3, 2, {"a": "1"})
        assert topics_equal(topic, topic)

    def test_symmetric(self):
        a = Topic("orders", 3, 2, {"a": "1"})
        b = Topic("orders", 3, 2, {"a": "1"})
        c = Topic("orders", 3, 2, {"a": "2"})
        assert (a == b) and (b == a)
        assert (a != c) and (c != a)

    def test_config_order_is_irrelevant(self):
        a = Topic("orders", 3, 2, {"a": "1", "b": "2"})
        b = Topic("orders", 3, 2, {"b": "2", "a": "1"})
        assert a == b

    def test_missing_key_differs_from_empty_string(self):
        assert not config_equal({}, {"a": ""})
        assert not config_equal({"a": ""}, {})

    def test_missing_key_differs_from_unset(self):
        assert not config_equal({}, {"a": None})

    @pytest.mark.parametrize(
        "other",
        [
            Topic("payments", 3, 2, {}),
            Topic("orders", 4, 2, {}),
            Topic("orders", 3, 3, {}),
        ],
    )
    def test_scalar_fields_must_match(self, other: Topic):
        assert Topic("orders", 3, 2, {}) != other

    def test_not_equal_to_other_types(self):
        assert Topic("orders", 3, 2, {}) != {"name": "orders"}

    def test_unhashable(self):
        with pytest.raises(TypeError):
            hash(Topic("orders", 3, 2, {}))


class TestFromPayload:
    def test_snake_case_body(self):
        body = {
            "name": "orders",
            "partitions": 6,
            "replication_factor": 3,
            "config": {"retention.ms": 1000},
        }
        assert Topic.from_payload(body) == Topic(
            "orders", 6, 3, {"retention.ms": "1000"}
        )

    def test_camel_case_wrapped_body(self):
        body = {
            "topic": {
                "name": "orders",
                "partitionCount": 6,
                "replicationFactor": 3,
            }
        }
        assert Topic.from_payload(body) == Topic("orders", 6, 3, {})

    @pytest.mark.parametrize(
        "body",
        [None, "orders", {"partitions": 1}, {"name": "orders", "partitions": 1}],
    )
    def test_malformed_body_raises(self, body: Any):
        with pytest.raises(ValueError):
            Topic.from_payload(body)


class TestConfigChanges:
    def test_reports_added_changed_and_removed_keys(self):
        old = {"keep": "1", "change": "a", "drop": "x"}
        new = {"keep": "1", "change": "b", "add": "y"}
        assert config_changes(old, new) == {"change": "b", "add": "y", "drop": None}

    def test_no_changes(self):
        assert config_changes({"a": "1"}, {"a": "1"}) == {}
