"""
Test suite for the script runtime.

Test structure:
- unit/ - Unit tests (fast, isolated)
- integration/ - Integration tests (full bootstrap loop against a stubbed control plane)
- fixtures/ - Handler files, handler modules and helpers

Run tests:
    pytest                    # All tests
    pytest tests/unit         # Unit tests only
    pytest tests/integration  # Integration tests only
    pytest -k "resolver"      # Tests matching name

Unit tests should be fast. The only test that sleeps is the remaining
time check in test_context.py.
"""
