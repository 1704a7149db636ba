from __future__ import annotations

import logging
from typing import Optional

from pmagent.store.gateway import StateGateway
from pmagent.store.models import ChangelogEntry

logger = logging.getLogger(__name__)


def log_changelog(
    store: StateGateway,
    *,
    type: str,
    title: str,
    description: Optional[str] = None,
    project_id: Optional[str] = None,
    previous_status: Optional[str] = None,
    new_status: Optional[str] = None,
) -> bool:
    """
    Append an auto-generated changelog entry.

    Best-effort: the mutation it describes has already been committed, so a failure
    here is logged and reported via the return value, never raised.
    """
    entry = ChangelogEntry(
        type=type,
        title=title,
        description=description,
        project_id=project_id,
        previous_status=previous_status,
        new_status=new_status,
        is_auto_generated=True,
    )
    try:
        store.append_changelog(entry)
        return True
    except Exception as e:
        logger.warning("Changelog append failed (non-fatal): %s (title=%s)", str(e), title)
        return False
