"""PostgreSQL schema migrations and schema introspection.

Advances a database through ordered, versioned migrations (optionally bootstrapping
an empty database from a schema snapshot) and generates idempotent SQL scripts that
reproduce a live database's schema.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
