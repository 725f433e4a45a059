"""Root exception for docmigrate.

Each component defines its own exceptions next to the code that raises them;
they all derive from DocMigrateError so the CLI can report them uniformly.
"""


class DocMigrateError(Exception):
    """Base exception for all docmigrate errors."""

    pass
