"""Entry point for running migrations as a module.

Usage:
    python -m pgmigrate.db.migrations migrate
    python -m pgmigrate.db.migrations migrate --target 202505181200
    python -m pgmigrate.db.migrations status
    python -m pgmigrate.db.migrations pull --environment local
    python -m pgmigrate.db.migrations create add_new_feature
"""

from .cli import main

if __name__ == "__main__":
    main()
