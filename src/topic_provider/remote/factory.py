"""Factory for the configured remote operator backend."""

from __future__ import annotations

from topic_provider.config.models import InvokerBackend, ProviderConfig
from topic_provider.remote.invoker import RemoteInvoker


def create_invoker(config: ProviderConfig) -> RemoteInvoker:
    """Create a RemoteInvoker for the configured backend."""
    if config.backend == InvokerBackend.LAMBDA:
        assert config.lambda_ is not None
        from topic_provider.remote.lambda_invoker import LambdaInvoker

        return LambdaInvoker(config.lambda_)

    if config.backend == InvokerBackend.HTTP:
        assert config.http is not None
        from topic_provider.remote.http_invoker import HttpInvoker

        return HttpInvoker(config.http)

    msg = f"Unsupported invoker backend: {config.backend}"
    raise ValueError(msg)
