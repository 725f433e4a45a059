"""Entry point for running docmigrate as a module.

Usage:
    python -m docmigrate plan
    python -m docmigrate apply --dry-run
"""

from .cli import main

if __name__ == "__main__":
    main()
