"""
Authorization Extensions.

Optional extensions for the core authorization system.
Import the extensions you need to register them.

Available:
- rbac: Role-based access control with prioritized, ownership-aware grants

Usage:
    # In main.py or app startup:
    from rolegate.extensions.auth import rbac  # Registers RBAC engine
"""

# Extensions are imported on-demand to register themselves
