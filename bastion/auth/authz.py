"""
BastionAuth - Authorization Engine

Role-based and permission-based access control:

- RoleGraph: role DAG with an ``implies`` relation and cycle rejection
- Access providers: static (config), store-backed, and cache-backed
- AccessControlEvaluator: role checks, all-of permission checks,
  super-admin bypass, and ``granted_by`` reporting
- AccessRule: declarative per-path requirements
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Mapping,
    Optional, Protocol, Set, Tuple, runtime_checkable,
)

import orjson

from ..cache.backends import MemoryBackend
from ..cache.core import CacheBackend
from ..faults import ConfigInvalidFault
from .core import Principal

logger = logging.getLogger("bastion.auth")
audit_logger = logging.getLogger("bastion.audit")

DIRECT = "direct"


# ============================================================================
# Authorization Types
# ============================================================================

class Decision(str, Enum):
    """Authorization decision."""

    ALLOW = "allow"
    DENY = "deny"


@dataclass
class AccessDecision:
    """Authorization result."""

    decision: Decision
    reason: Optional[str] = None
    missing_roles: Tuple[str, ...] = ()
    missing_permissions: Tuple[str, ...] = ()
    granted_by: Dict[str, str] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


@dataclass(frozen=True)
class Grants:
    """Roles and direct permissions a provider assigns to one principal."""

    roles: FrozenSet[str] = frozenset()
    direct_permissions: FrozenSet[str] = frozenset()

    def to_dict(self) -> dict:
        return {"roles": sorted(self.roles), "permissions": sorted(self.direct_permissions)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Grants":
        return cls(
            roles=frozenset(data.get("roles", ())),
            direct_permissions=frozenset(data.get("permissions", ())),
        )


@dataclass(frozen=True)
class ResolvedAccess:
    """Effective access of a principal after role expansion."""

    roles: FrozenSet[str]
    direct_permissions: FrozenSet[str]
    role_permissions: Mapping[str, str]

    @property
    def permissions(self) -> FrozenSet[str]:
        return self.direct_permissions | frozenset(self.role_permissions)


class RoleCycleError(ValueError):
    """Raised when an ``implies`` edge would create a cycle."""


# ============================================================================
# Role DAG
# ============================================================================

class RoleGraph:
    """
    Role hierarchy.

    ``implies`` edges point from a senior role to the roles it includes
    (``admin`` implies ``editor``). The graph is kept acyclic.
    """

    def __init__(self):
        self._permissions: Dict[str, Set[str]] = {}
        self._implies: Dict[str, Set[str]] = {}

    @classmethod
    def from_mapping(cls, definitions: Mapping[str, Any]) -> "RoleGraph":
        """
        Build from ``{role: {"permissions": [...], "implies": [...]}}``.

        A bare list value is shorthand for the permission list.
        """
        graph = cls()
        for role, spec in definitions.items():
            if isinstance(spec, Mapping):
                graph.define_role(role, spec.get("permissions", ()), ())
            else:
                graph.define_role(role, spec or (), ())
        for role, spec in definitions.items():
            if isinstance(spec, Mapping):
                for implied in spec.get("implies", ()) or ():
                    graph.add_implication(role, implied)
        return graph

    @property
    def roles(self) -> List[str]:
        return sorted(self._permissions)

    def define_role(self, role: str, permissions: Iterable[str] = (), implies: Iterable[str] = ()) -> None:
        """Define (or extend) a role with permissions and implied roles."""
        self._permissions.setdefault(role, set()).update(permissions)
        self._implies.setdefault(role, set())
        for implied in implies:
            self.add_implication(role, implied)

    def grant_permission(self, role: str, permission: str) -> None:
        self._permissions.setdefault(role, set()).add(permission)
        self._implies.setdefault(role, set())

    def revoke_permission(self, role: str, permission: str) -> None:
        self._permissions.get(role, set()).discard(permission)

    def add_implication(self, role: str, implied: str) -> None:
        """Add ``role implies implied``; rejects edges that close a cycle."""
        if role == implied or role in self.expand([implied]):
            raise RoleCycleError(f"Role '{role}' implying '{implied}' would create a cycle")
        self._permissions.setdefault(implied, set())
        self._implies.setdefault(implied, set())
        self._permissions.setdefault(role, set())
        self._implies.setdefault(role, set()).add(implied)

    def expand(self, roles: Iterable[str]) -> FrozenSet[str]:
        """Transitive closure of ``roles`` under ``implies`` (includes the inputs)."""
        seen: Set[str] = set()
        stack = list(roles)
        while stack:
            role = stack.pop()
            if role in seen:
                continue
            seen.add(role)
            stack.extend(self._implies.get(role, ()))
        return frozenset(seen)

    def permissions_for(self, roles: Iterable[str]) -> Dict[str, str]:
        """Map each permission reachable from ``roles`` to a role granting it."""
        granted: Dict[str, str] = {}
        for role in sorted(self.expand(roles)):
            for permission in self._permissions.get(role, ()):
                granted.setdefault(permission, role)
        return granted

    def implies(self, role: str, other: str) -> bool:
        return other in self.expand([role])

    def copy(self) -> "RoleGraph":
        clone = RoleGraph()
        clone._permissions = {role: set(perms) for role, perms in self._permissions.items()}
        clone._implies = {role: set(edges) for role, edges in self._implies.items()}
        return clone


# ============================================================================
# Providers
# ============================================================================

ChangeListener = Callable[[Optional[str]], Awaitable[None]]


@runtime_checkable
class AccessProvider(Protocol):
    """Source of the role graph and of per-principal grants."""

    async def role_graph(self) -> RoleGraph: ...

    async def grants_for(self, principal: Principal) -> Grants: ...


class StaticAccessProvider:
    """
    Provider backed by an in-process mapping (usually from configuration).

    Args:
        roles: ``{role: {"permissions": [...], "implies": [...]}}``
        principals: ``{principal_id: {"roles": [...], "permissions": [...]}}``

    Management methods emit an audit record on ``bastion.audit`` and notify
    change listeners (the cache-backed provider registers one).
    """

    def __init__(
        self,
        roles: Optional[Mapping[str, Any]] = None,
        principals: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self._graph = RoleGraph.from_mapping(roles or {})
        self._grants: Dict[str, Grants] = {
            str(pid): Grants.from_dict(spec) for pid, spec in (principals or {}).items()
        }
        self._listeners: List[ChangeListener] = []

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    async def _changed(self, action: str, principal_id: Optional[str], **details: Any) -> None:
        audit_logger.info(
            "rbac.%s",
            action,
            extra={"context": {"action": action, "principal_id": principal_id, **details}},
        )
        for listener in self._listeners:
            await listener(principal_id)

    async def role_graph(self) -> RoleGraph:
        return self._graph

    async def grants_for(self, principal: Principal) -> Grants:
        return self._grants.get(principal.identifier, Grants())

    # ─── Role management ──────────────────────────────────────────────────

    async def define_role(self, role: str, permissions: Iterable[str] = (), implies: Iterable[str] = ()) -> None:
        permissions = list(permissions)
        implies = list(implies)
        self._graph.define_role(role, permissions, implies)
        await self._changed("role_defined", None, role=role, permissions=permissions, implies=implies)

    async def grant_permission(self, role: str, permission: str) -> None:
        self._graph.grant_permission(role, permission)
        await self._changed("permission_granted", None, role=role, permission=permission)

    # ─── Principal grants ─────────────────────────────────────────────────

    async def assign_role(self, principal_id: str, role: str) -> None:
        if role not in self._graph.roles:
            raise KeyError(f"Unknown role {role!r}")
        current = self._grants.get(principal_id, Grants())
        self._grants[principal_id] = Grants(current.roles | {role}, current.direct_permissions)
        await self._changed("role_assigned", principal_id, role=role)

    async def revoke_role(self, principal_id: str, role: str) -> None:
        current = self._grants.get(principal_id, Grants())
        self._grants[principal_id] = Grants(current.roles - {role}, current.direct_permissions)
        await self._changed("role_revoked", principal_id, role=role)

    async def grant_direct(self, principal_id: str, permission: str) -> None:
        current = self._grants.get(principal_id, Grants())
        self._grants[principal_id] = Grants(current.roles, current.direct_permissions | {permission})
        await self._changed("direct_granted", principal_id, permission=permission)

    async def revoke_direct(self, principal_id: str, permission: str) -> None:
        current = self._grants.get(principal_id, Grants())
        self._grants[principal_id] = Grants(current.roles, current.direct_permissions - {permission})
        await self._changed("direct_revoked", principal_id, permission=permission)


@runtime_checkable
class PrincipalStore(Protocol):
    """Persistent role and grant storage."""

    async def load_roles(self) -> Mapping[str, Any]: ...

    async def load_grants(self, principal_id: str) -> Optional[Mapping[str, Any]]: ...


class MemoryPrincipalStore:
    """In-memory PrincipalStore for development/testing."""

    def __init__(
        self,
        roles: Optional[Mapping[str, Any]] = None,
        grants: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self.roles: Dict[str, Any] = dict(roles or {})
        self.grants: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (grants or {}).items()}
        self.reads = 0

    async def load_roles(self) -> Mapping[str, Any]:
        self.reads += 1
        return self.roles

    async def load_grants(self, principal_id: str) -> Optional[Mapping[str, Any]]:
        self.reads += 1
        return self.grants.get(principal_id)


class StoreAccessProvider:
    """Provider that reads roles and grants from a PrincipalStore on demand."""

    def __init__(self, store: PrincipalStore):
        self.store = store

    async def role_graph(self) -> RoleGraph:
        return RoleGraph.from_mapping(await self.store.load_roles())

    async def grants_for(self, principal: Principal) -> Grants:
        data = await self.store.load_grants(principal.identifier)
        return Grants.from_dict(data) if data else Grants()


class CachedAccessProvider:
    """
    Caches another provider's grants in a CacheBackend.

    Entries live for ``ttl`` seconds and are dropped explicitly through
    ``invalidate``. The role graph is held in memory and reloaded from the
    wrapped provider once it is ``ttl`` seconds old. When the wrapped
    provider supports change listeners the cache invalidates itself on
    every management call.
    """

    def __init__(self, inner: AccessProvider, backend: CacheBackend, ttl: int = 300,
                 prefix: str = "bastion:grants:", clock: Optional[Callable[[], float]] = None):
        self.inner = inner
        self.backend = backend
        self.ttl = ttl
        self.prefix = prefix
        self._clock = clock or time.monotonic
        self._graph: Optional[RoleGraph] = None
        self._graph_loaded_at = 0.0
        if hasattr(inner, "on_change"):
            inner.on_change(self.invalidate)

    def __getattr__(self, name: str) -> Any:
        # Management methods (assign_role, define_role, ...) live on the inner provider.
        if name == "inner":
            raise AttributeError(name)
        return getattr(self.inner, name)

    async def role_graph(self) -> RoleGraph:
        now = self._clock()
        if self._graph is None or now - self._graph_loaded_at > self.ttl:
            self._graph = await self.inner.role_graph()
            self._graph_loaded_at = now
        return self._graph

    async def grants_for(self, principal: Principal) -> Grants:
        key = f"{self.prefix}{principal.identifier}"
        entry = await self.backend.get(key)
        if entry is not None:
            return Grants.from_dict(orjson.loads(entry.value))
        grants = await self.inner.grants_for(principal)
        await self.backend.set(key, orjson.dumps(grants.to_dict()), ttl=self.ttl)
        return grants

    async def invalidate(self, principal_id: Optional[str] = None) -> None:
        """Drop cached grants for one principal, or everything when None."""
        if principal_id is None:
            self._graph = None
            await self.backend.delete_prefix(self.prefix)
        else:
            await self.backend.delete(f"{self.prefix}{principal_id}")


def create_access_provider(
    kind: str,
    *,
    roles: Optional[Mapping[str, Any]] = None,
    principals: Optional[Mapping[str, Mapping[str, Any]]] = None,
    store: Optional[PrincipalStore] = None,
    backend: Optional[CacheBackend] = None,
    ttl: int = 300,
) -> AccessProvider:
    """
    Select a provider by kind.

    - ``static``: StaticAccessProvider from ``roles``/``principals``
    - ``database``: StoreAccessProvider over ``store``
    - ``cache``: CachedAccessProvider wrapping the store provider when a
      store is given, else the static provider
    """
    if kind == "static":
        return StaticAccessProvider(roles, principals)
    if kind == "database":
        if store is None:
            raise ConfigInvalidFault("auth.access_provider", "'database' provider requires a PrincipalStore")
        return StoreAccessProvider(store)
    if kind == "cache":
        inner: AccessProvider = StoreAccessProvider(store) if store is not None else StaticAccessProvider(roles, principals)
        return CachedAccessProvider(inner, backend or MemoryBackend(), ttl=ttl)
    raise ConfigInvalidFault("auth.access_provider", f"unknown provider kind {kind!r}")


# ============================================================================
# Rules
# ============================================================================

@dataclass(frozen=True)
class AccessRule:
    """
    Access requirement for a path.

    Attributes:
        path: Exact path or prefix glob ending in ``*``
        roles: Any-of role requirement (empty = no role requirement)
        permissions: All-of permission requirement
        methods: HTTP methods the rule applies to (empty = all)
    """
    path: str
    roles: Tuple[str, ...] = ()
    permissions: Tuple[str, ...] = ()
    methods: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AccessRule":
        return cls(
            path=data["path"],
            roles=tuple(data.get("roles", ()) or ()),
            permissions=tuple(data.get("permissions", ()) or ()),
            methods=tuple(m.upper() for m in data.get("methods", ()) or ()),
        )

    def matches(self, method: str, path: str) -> bool:
        if self.methods and method.upper() not in self.methods:
            return False
        if self.path.endswith("*"):
            return path.startswith(self.path[:-1])
        return path == self.path


def match_rule(rules: Iterable[AccessRule], method: str, path: str) -> Optional[AccessRule]:
    """First rule matching the request, or None."""
    for rule in rules:
        if rule.matches(method, path):
            return rule
    return None


# ============================================================================
# Evaluator
# ============================================================================

class AccessControlEvaluator:
    """
    Evaluates role and permission requirements against a principal.

    Effective roles are the principal's roles plus provider-assigned roles,
    expanded through the role DAG. Effective permissions are the union of
    role-implied permissions and direct grants; a direct grant is reported
    as ``granted_by[perm] == "direct"`` even when a role also grants it.

    Args:
        provider: Access provider
        super_admin_role: Role that bypasses every check
    """

    def __init__(self, provider: AccessProvider, super_admin_role: str = "super_admin"):
        self.provider = provider
        self.super_admin_role = super_admin_role

    async def resolve(self, principal: Principal) -> ResolvedAccess:
        graph = await self.provider.role_graph()
        grants = await self.provider.grants_for(principal)
        held = principal.roles | grants.roles
        return ResolvedAccess(
            roles=graph.expand(held),
            direct_permissions=principal.permissions | grants.direct_permissions,
            role_permissions=graph.permissions_for(held),
        )

    def _is_super_admin(self, access: ResolvedAccess) -> bool:
        return self.super_admin_role in access.roles

    async def check_roles(self, principal: Principal, required: Iterable[str]) -> AccessDecision:
        """Allowed when the principal holds (or transitively implies) any required role."""
        required = tuple(required)
        if not required:
            return AccessDecision(Decision.ALLOW, reason="No roles required")
        access = await self.resolve(principal)
        if self._is_super_admin(access):
            return AccessDecision(Decision.ALLOW, reason="super_admin bypass")
        matched = [role for role in required if role in access.roles]
        if matched:
            return AccessDecision(Decision.ALLOW, reason=f"Holds role: {matched[0]}")
        return AccessDecision(
            Decision.DENY,
            reason="No required role held",
            missing_roles=required,
        )

    async def check_permissions(self, principal: Principal, required: Iterable[str]) -> AccessDecision:
        """Allowed only when every required permission is held."""
        required = tuple(required)
        access = await self.resolve(principal)
        if self._is_super_admin(access):
            return AccessDecision(
                Decision.ALLOW,
                reason="super_admin bypass",
                granted_by={perm: self.super_admin_role for perm in required},
            )

        granted_by: Dict[str, str] = {}
        missing: List[str] = []
        for perm in required:
            if perm in access.direct_permissions:
                granted_by[perm] = DIRECT
            elif perm in access.role_permissions:
                granted_by[perm] = access.role_permissions[perm]
            else:
                missing.append(perm)

        if missing:
            return AccessDecision(
                Decision.DENY,
                reason=f"Missing permissions: {', '.join(missing)}",
                missing_permissions=tuple(missing),
                granted_by=granted_by,
            )
        return AccessDecision(Decision.ALLOW, reason="All permissions held", granted_by=granted_by)

    async def authorize(self, principal: Principal, rule: AccessRule) -> AccessDecision:
        """Apply both checks of ``rule``; both must pass."""
        role_decision = await self.check_roles(principal, rule.roles)
        if not role_decision.allowed:
            return role_decision
        return await self.check_permissions(principal, rule.permissions)


__all__ = [
    "Decision",
    "AccessDecision",
    "Grants",
    "ResolvedAccess",
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
]
