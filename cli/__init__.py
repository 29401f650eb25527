"""Command line tools for the alarm monitor service.

The Typer application lives in ``cli.app`` and is not re-exported here, so
``cli.app`` keeps resolving to the module that tests patch.
"""

__all__: list[str] = []
