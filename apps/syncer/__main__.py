"""
Syncer Module Entry Point

Allows execution via: python -m apps.syncer

Delegates to scheduler for all execution modes (scheduled and RUN_ONCE).
"""

from apps.syncer.scheduler import cli

if __name__ == "__main__":
    cli()
