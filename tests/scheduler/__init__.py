"""
Job Scheduler Test Suite.

- Persistence invariant tests (conditional writes)
- State transition tests (done, cancel)
- Cascade, duplication and resource resolution tests
- Status update, carry-over and read projection tests
- End-to-end restart and failure scenarios
"""
