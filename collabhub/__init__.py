# CollabHub - Team collaboration platform
"""
CollabHub: access control and security audit core.

Components:
    - Permission catalog, role administration and team membership roles
    - Permission resolver (fail-closed access decisions)
    - Audit recorder with anomaly detection and incident management

Example:
    uvicorn collabhub.api.main:app
"""

__version__ = "1.0.0"
