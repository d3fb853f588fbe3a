"""
Clinic Booking Tests

Unit tests run without PostgreSQL or Redis: the in-memory schedule store,
the in-memory patient directory and the session manager's in-memory
fallback stand in for them. SQL DDL is checked by compiling against the
PostgreSQL dialect.

Running Tests:
    pip install -e ".[test]"
    pytest tests/unit -v
"""
