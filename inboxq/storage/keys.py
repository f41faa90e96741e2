"""Owner-namespaced cache key builders.

Every component is percent-encoded so an owner id or query containing ``:``
cannot collide with another owner's key.
"""

from __future__ import annotations

from urllib.parse import quote

from inboxq.storage.tenancy import enforce_tenancy


def _part(value: object) -> str:
    return quote(str(value), safe="")


@enforce_tenancy
def email_key(owner_id: str, message_id: str) -> str:
    return f"email:{_part(owner_id)}:{_part(message_id)}"


@enforce_tenancy
def summary_key(owner_id: str, message_id: str) -> str:
    return f"summary:{_part(owner_id)}:{_part(message_id)}"


@enforce_tenancy
def history_key(owner_id: str) -> str:
    return f"historyId:{_part(owner_id)}"


@enforce_tenancy
def cursor_key(owner_id: str, query: str, page: int, page_size: int) -> str:
    """Key of the cursor that lists ``page`` of ``query`` at ``page_size`` per page."""
    return f"nextPageToken:{_part(owner_id)}:{_part(query)}:{page}:{page_size}"


@enforce_tenancy
def page_key(owner_id: str, query: str, page: int, page_size: int) -> str:
    return f"page:{_part(owner_id)}:{_part(query)}:{page}:{page_size}"


@enforce_tenancy
def owner_key(owner_id: str, key: str) -> str:
    """Scope a caller-supplied key (cache consumer contract) to its owner."""
    return f"user:{_part(owner_id)}:{key}"
