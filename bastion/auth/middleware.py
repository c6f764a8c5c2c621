"""
BastionAuth - Authentication and authorization stages.

Order in the pipeline:
1. AuthenticationStage (binds ``request.principal``)
2. AuthorizationStage (applies the first matching AccessRule)
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from ..faults import UnauthenticatedFault, UnauthorizedFault
from ..middleware import ExclusionPolicy, Handler, NeverExclude, Stage
from ..request import Request
from ..response import Response
from .authz import AccessControlEvaluator, AccessRule, match_rule
from .guards import Guard


class AuthenticationStage(Stage):
    """
    Tries each guard in order; the first Principal wins.

    Unauthenticated API clients get 401 JSON (with a ``WWW-Authenticate``
    challenge when a configured guard has one); browser navigations
    (``Accept: text/html``) are redirected to ``login_url``. Requests
    matched by ``optional`` run the guards but continue anonymously when
    none succeeds.

    Args:
        guards: Guards in priority order
        login_url: Redirect target for HTML clients
        session_key: Session key the principal id is bound under
        exclusion: Requests that skip authentication
        optional: Requests where authentication is attempted but not required
        logger: Logger (``bastion.auth`` by default)
    """

    name = "auth"

    def __init__(
        self,
        guards: Sequence[Guard],
        *,
        login_url: str = "/login",
        session_key: str = "principal_id",
        exclusion: Optional[ExclusionPolicy] = None,
        optional: Optional[ExclusionPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        if not guards:
            raise ValueError("AuthenticationStage requires at least one guard")
        self.guards: List[Guard] = list(guards)
        self.login_url = login_url
        self.session_key = session_key
        self.optional = optional or NeverExclude()
        self.challenges = [guard.challenge for guard in self.guards if getattr(guard, "challenge", None)]
        self.logger = logger or logging.getLogger("bastion.auth")

    async def process(self, request: Request, next_handler: Handler) -> Response:
        last_guard = None
        for guard in self.guards:
            last_guard = guard.name
            principal = await guard.authenticate(request)
            if principal is not None:
                request.principal = principal
                request.state["auth.guard"] = guard.name
                if request.session is not None and request.session.get(self.session_key) != principal.identifier:
                    request.session.set(self.session_key, principal.identifier)
                return await next_handler(request)

        if self.optional.is_excluded(request):
            self.logger.debug("No credentials on optional route %s", request.path)
            return await next_handler(request)

        fault = UnauthenticatedFault(guard=last_guard)
        self.logger.warning(
            "Authentication failed",
            extra={"context": {**request.context(), "guard": last_guard}},
        )
        if request.expects_html():
            response = Response.redirect(self.login_url, status=302)
            response.fault = fault
            return response
        response = Response.from_fault(fault)
        for challenge in self.challenges:
            response.add_header("www-authenticate", challenge)
        return response


class AuthorizationStage(Stage):
    """
    Applies role/permission requirements declared as AccessRules.

    Requests matching no rule pass through. A matching rule without an
    authenticated principal yields 401; a failed check yields 403.

    Args:
        evaluator: Access control evaluator
        rules: Rules in priority order (first match applies)
        exclusion: Requests that skip authorization
        logger: Logger (``bastion.auth`` by default)
    """

    name = "authz"

    def __init__(
        self,
        evaluator: AccessControlEvaluator,
        rules: Iterable[AccessRule] = (),
        *,
        exclusion: Optional[ExclusionPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.evaluator = evaluator
        self.rules: List[AccessRule] = list(rules)
        self.logger = logger or logging.getLogger("bastion.auth")

    async def process(self, request: Request, next_handler: Handler) -> Response:
        rule = match_rule(self.rules, request.method, request.path)
        if rule is None:
            return await next_handler(request)

        principal = request.principal
        if principal is None:
            self.logger.warning(
                "Authorization requires an authenticated principal",
                extra={"context": {**request.context(), "rule": rule.path}},
            )
            return Response.from_fault(UnauthenticatedFault(guard=None))

        decision = await self.evaluator.authorize(principal, rule)
        if not decision.allowed:
            self.logger.warning(
                "Authorization denied: %s",
                decision.reason,
                extra={"context": {
                    **request.context(),
                    "principal_id": principal.identifier,
                    "rule": rule.path,
                    "missing_roles": list(decision.missing_roles),
                    "missing_permissions": list(decision.missing_permissions),
                }},
            )
            return Response.from_fault(UnauthorizedFault(
                missing_roles=list(decision.missing_roles),
                missing_permissions=list(decision.missing_permissions),
            ))

        request.state["authz.granted_by"] = decision.granted_by
        return await next_handler(request)


__all__ = ["AuthenticationStage", "AuthorizationStage"]
