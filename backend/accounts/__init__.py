# accounts/__init__.py
"""
Accounts app - school users, identities and permissions.

This app provides:
- PermissionResolver: Layered role x permission decisions per school
- IdentityIssuer: Sequential user ids and initial credentials
- ActorContext: Authorization context for commands
- SchoolContextMiddleware: Per-request school selection

It has no models of its own; users live in each school's records store.
"""
