from __future__ import annotations

from typing import Any

import pytest
from scripted import BOOTSTRAP, ScriptedInvoker


@pytest.fixture
def invoker() -> ScriptedInvoker:
    return ScriptedInvoker()


@pytest.fixture
def desired() -> dict[str, Any]:
    return {
        "name": "orders",
        "partitions": 3,
        "replication_factor": 2,
        "config": {},
        "bootstrap_server": BOOTSTRAP,
    }
