"""
CollabHub - Access Module

Role-based access control and team membership roles.

Components:
- permissions.py: Permission catalog, default roles, team role ladder
- rbac.py: Permission resolver and permission checks
- roles.py: Role and role-assignment management
- teams.py: Team membership management (sole-owner guard)

Usage:
    from collabhub.api.access.permissions import Permission, TeamRole
    from collabhub.api.access.rbac import PermissionResolver, check_permission
"""
