"""Shared-secret gate for stats, export and visit lookup."""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Query

from sitebeacon.collector.config import settings


def require_admin_key(
    x_admin_key: Annotated[str | None, Header()] = None,
    key: Annotated[str | None, Query(include_in_schema=False)] = None,
) -> None:
    """Reject the request unless the admin secret was sent.

    The secret is accepted from the ``x-admin-key`` header or the ``key``
    query parameter.
    """
    supplied = x_admin_key or key
    if supplied is None or not hmac.compare_digest(
        supplied.encode("utf-8"), settings.admin_key.encode("utf-8")
    ):
        raise HTTPException(401, "Unauthorized")


AdminAccess = Depends(require_admin_key)
