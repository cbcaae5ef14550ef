"""
Domain models — value objects, the environment aggregate and invocation results.

    from deployer.core.models import Environment, ProvisioningState, EnvironmentName
"""

from deployer.core.models.environment import (
    DESTROYABLE_STATES,
    TRANSITIONS,
    Environment,
    FailureRecord,
    ProvisioningState,
    can_transition,
)
from deployer.core.models.invocation import AdapterInvocationResult
from deployer.core.models.values import (
    REDACTED,
    ApiToken,
    DomainName,
    Email,
    EnvironmentName,
    InstanceName,
    Password,
    ProfileName,
    ServiceEndpoint,
    Username,
)

__all__ = [
    "AdapterInvocationResult",
    "ApiToken",
    "DESTROYABLE_STATES",
    "DomainName",
    "Email",
    "Environment",
    "EnvironmentName",
    "FailureRecord",
    "InstanceName",
    "Password",
    "ProfileName",
    "ProvisioningState",
    "REDACTED",
    "ServiceEndpoint",
    "TRANSITIONS",
    "Username",
    "can_transition",
]
