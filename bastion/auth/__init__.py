"""
BastionAuth - Authentication and access control for the pipeline.

Provides:
- Principal and credential storage
- Guards: session, bearer token, API key and HTTP Basic (Argon2-verified)
- RBAC/PBAC: role DAG, pluggable access providers, evaluator
- Authentication and authorization stages
"""

from .authz import (
    AccessControlEvaluator,
    AccessDecision,
    AccessProvider,
    AccessRule,
    CachedAccessProvider,
    Decision,
    Grants,
    MemoryPrincipalStore,
    PrincipalStore,
    RoleCycleError,
    RoleGraph,
    StaticAccessProvider,
    StoreAccessProvider,
    create_access_provider,
    match_rule,
)
from .core import ApiKeyCredential, CredentialStore, MemoryCredentialStore, Principal
from .guards import ApiKeyGuard, BasicAuthGuard, BearerTokenGuard, Guard, SessionGuard
from .hashing import TokenHasher
from .middleware import AuthenticationStage, AuthorizationStage

__all__ = [
    "Principal",
    "ApiKeyCredential",
    "CredentialStore",
    "MemoryCredentialStore",
    "TokenHasher",
    "Guard",
    "SessionGuard",
    "BearerTokenGuard",
    "ApiKeyGuard",
    "BasicAuthGuard",
    "Decision",
    "AccessDecision",
    "Grants",
    "RoleCycleError",
    "RoleGraph",
    "AccessProvider",
    "StaticAccessProvider",
    "PrincipalStore",
    "MemoryPrincipalStore",
    "StoreAccessProvider",
    "CachedAccessProvider",
    "create_access_provider",
    "AccessRule",
    "match_rule",
    "AccessControlEvaluator",
    "AuthenticationStage",
    "AuthorizationStage",
]
