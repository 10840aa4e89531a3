"""Repository adapters for cohorts and policy configurations."""

from CohortPolicy.persistence.memory import InMemoryCohortRepository, InMemoryPolicyRepository
from CohortPolicy.persistence.json_store import JsonCohortRepository, JsonPolicyRepository

__all__ = [
    "InMemoryCohortRepository",
    "InMemoryPolicyRepository",
    "JsonCohortRepository",
    "JsonPolicyRepository",
]
