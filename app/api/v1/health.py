from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.db.session import get_db

router = APIRouter()


@router.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    rid = getattr(request.state, "request_id", None)
    db.execute(text("SELECT 1"))
    queue = request.app.state.container.queue
    return {
        "status": "ok",
        "request_id": rid,
        "generations_in_flight": len(queue.pending()) if queue else 0,
    }
