"""Policy link storage and effective-value resolution."""

from CohortPolicy.policy.models import (
    DEFAULT_SCALARS,
    LinkedOverride,
    PolicyConfig,
    Scalar,
    ValidationReport,
    normalise_scalar,
    validate_scalar,
)
from CohortPolicy.policy.resolution import (
    REDUCERS,
    Contributor,
    Derivable,
    MembershipSource,
    Precomputed,
    Resolution,
    ResolutionEngine,
)
from CohortPolicy.policy.store import PolicyLinkStore, PolicyRepository

__all__ = [
    "Contributor",
    "DEFAULT_SCALARS",
    "Derivable",
    "LinkedOverride",
    "MembershipSource",
    "PolicyConfig",
    "PolicyLinkStore",
    "PolicyRepository",
    "Precomputed",
    "REDUCERS",
    "Resolution",
    "ResolutionEngine",
    "Scalar",
    "ValidationReport",
    "normalise_scalar",
    "validate_scalar",
]
