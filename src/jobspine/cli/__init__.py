"""
CLI layer for jobspine.

Provides a Typer application for operating a scheduler replica: validating
cron expressions, listing jobs, initialising the outcome table, inspecting
and purging outcomes, and running the scheduler in the foreground. This
package only handles terminal transport; everything it does goes through
``jobspine.scheduling``.

Entry point::

    jobspine --help
"""

from jobspine.cli.app import app

__all__ = ["app"]
