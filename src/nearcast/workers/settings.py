"""arq worker settings module.

Import path for arq CLI: arq nearcast.workers.settings.WorkerSettings
"""

from __future__ import annotations

from nearcast.workers.retention import WorkerSettings

__all__ = ["WorkerSettings"]
