"""
Backend selection for each provider.

Choosing a backend is a construction-time decision: the registry stores
the ``(primary, fallback)`` pair and the aggregator never branches on the
provider at call time.
"""

from __future__ import annotations

import logging
from typing import Callable

from pkg.cloud.aws import AWSBackend
from pkg.cloud.azure import AzureBackend
from pkg.cloud.base import ProviderBackend
from pkg.cloud.gcp import GCPBackend
from pkg.cloud.simulated import SimulatedBackend
from pkg.config import Settings, get_settings
from pkg.models import ProviderId

logger = logging.getLogger(__name__)

BackendFactory = Callable[[ProviderId, Settings], tuple[ProviderBackend, ProviderBackend]]


def build_backends(
    provider_id: ProviderId,
    settings: Settings | None = None,
) -> tuple[ProviderBackend, ProviderBackend]:
    """Return the ``(primary, fallback)`` backends for *provider_id*."""
    settings = settings or get_settings()
    provider_id = ProviderId(provider_id)
    fallback = SimulatedBackend(provider_id, seed=settings.simulated_seed)

    if not settings.use_live_backends:
        return SimulatedBackend(provider_id, seed=settings.simulated_seed), fallback

    if provider_id is ProviderId.AWS:
        primary: ProviderBackend = AWSBackend(settings)
    elif provider_id is ProviderId.AZURE:
        primary = AzureBackend()
    else:
        primary = GCPBackend()
    logger.debug("Backends for %s: %s -> %s", provider_id.value, primary.name, fallback.name)
    return primary, fallback
