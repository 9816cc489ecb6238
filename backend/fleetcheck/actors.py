from uuid import UUID

from fastapi import Header, HTTPException, status

# purpose: resolve the acting user forwarded by the fronting application
# status: active


async def get_current_actor(x_actor_id: str | None = Header(default=None)) -> UUID:
    """Return the actor id from the ``X-Actor-Id`` header.

    Sessions and credentials are verified upstream; this service only needs
    a stable actor reference for assignment and audit.
    """

    if not x_actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Actor-Id header")
    try:
        return UUID(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid X-Actor-Id header")
