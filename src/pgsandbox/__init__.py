"""
pgsandbox - Disposable PostgreSQL containers with migrations and hot-reload
"""

__version__ = "0.1.0"

from .core import PostgresService, SandboxError

__all__ = ["PostgresService", "SandboxError"]
