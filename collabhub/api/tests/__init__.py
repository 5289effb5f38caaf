"""
CollabHub API Test Suite

Test Files:
- conftest.py: Shared fixtures (database, audit pipeline, users, client)
- test_rbac.py: Permission resolution and team-scoped checks
- test_roles.py: Role administration and assignments
- test_teams.py: Team membership and the sole-owner guard
- test_audit_pipeline.py: Recorder guarantees, detection and incidents
- test_audit_service.py: Log queries, retention and compliance reports
- test_auth.py: Password and federated sign-in
- test_api.py: HTTP surface, error mapping and middleware

Run Commands:
    pytest collabhub/api/tests -v
"""
