"""Domain values shared across the provisioning engine."""

from .models import (
    Device,
    Partition,
    ProvisioningPlan,
    ProvisioningResult,
    ProvisioningStep,
)

__all__ = [
    "Device",
    "Partition",
    "ProvisioningPlan",
    "ProvisioningResult",
    "ProvisioningStep",
]
