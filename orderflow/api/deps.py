"""Request-scoped dependencies shared by the v1 endpoints."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from orderflow.db.session import get_db
from orderflow.services.order_lifecycle import OrderLifecycle


def get_lifecycle(request: Request, db: Session = Depends(get_db)) -> OrderLifecycle:
    """Bind the process-wide broadcaster and notifier to this request's session."""
    return OrderLifecycle(
        db=db,
        broadcaster=request.app.state.broadcaster,
        notifier=request.app.state.notifier,
    )
