"""
jobspine - cron-style background jobs for multi-replica services.

Every replica runs its own scheduler loop against shared storage; a
storage-backed advisory lock per job name guarantees that a due job runs
on at most one replica per firing.
"""

__version__ = "0.1.0"
