"""
CollabHub - Audit Module

Best-effort audit recording, anomaly detection and security incidents.

Components:
- types.py: Audit actions, outcomes, incident enumerations and state machine
- recorder.py: Queue-backed, never-raising audit recorder
- breaker.py: Circuit breaker around detection
- detector.py: Windowed anomaly rules
- incidents.py: Incident create-or-merge and resolution
- service.py: Audit log queries, retention and compliance reports
- pipeline.py: Wiring of recorder, detector and incident manager
- middleware.py: Per-request audit events
"""
