"""Authorization engine for MINISTRY/SCHOOL scoped applications."""

from scopeguard.context import Action, Scope, SecurityContext
from scopeguard.engine import AuthorizationEngine, build_engine

__all__ = ["Action", "AuthorizationEngine", "Scope", "SecurityContext", "build_engine"]
