"""State gateway: projects, tasks, notes, feedback, changelog and assistant memories.

This package is intentionally dependency-light at import time. Postgres drivers are
imported lazily inside functions so tests and the CLI can run without DB access.
"""

from __future__ import annotations
