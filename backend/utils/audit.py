import hashlib

from sqlalchemy.orm import Session
from models.log import Log

def write_log(db: Session, *, actor, action, resource, status="SUCCESS", ip=None, meta=None):
    # Audit trail entry; committed on its own after the business change
    entry = Log(actor=str(actor) if actor is not None else None, action=action, resource=resource,
                status=status, ip=ip, meta=meta or {})
    db.add(entry)
    db.commit()

def session_actor(token: str) -> str:
    # Cart tokens are bearer credentials; the log only keeps a stable fingerprint
    return "cart:" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]

def client_ip(request) -> str:
    return request.client.host if request.client else None
