"""jobspine core -- errors, logging, settings, clock and storage primitives.

Architecture::

    errors.py          Structured error taxonomy (ConfigurationError, ...)
    logging.py         structlog configuration and context binding
    settings.py        SchedulerSettings (pydantic-settings, JOBSPINE_ env)
    timestamps.py      ULID generation, UTC helpers, Clock protocol
    storage.py         SQLAlchemy engine factory and outcome table

Tags:
    jobspine, core, primitives
"""
