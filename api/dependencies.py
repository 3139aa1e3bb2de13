"""
FastAPI dependencies: bearer token verification and store procedures.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from config import settings
from database import EvaluationProcedures, SqlEvaluationProcedures, get_db
from handlers import CallerContext

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, expires_minutes: int = 30, **claims: Any) -> str:
    """Sign a token whose ``sub`` is ``user_id``. Issuance normally happens upstream."""
    payload: Dict[str, Any] = dict(claims)
    payload["sub"] = user_id
    payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[str]:
    """Return the user id carried by ``token``, or None when it does not verify."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": bool(settings.jwt_audience)},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected invalid token: %s", exc)
        return None

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id


def get_caller(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> CallerContext:
    """
    Identity of the request.

    A missing or unverifiable token yields an anonymous context; the handler
    then reports Unauthenticated.
    """
    if credentials is None:
        return CallerContext()
    return CallerContext(user_id=decode_access_token(credentials.credentials))


def get_procedures(db: Session = Depends(get_db)) -> EvaluationProcedures:
    """Store procedures bound to the request's database session."""
    return SqlEvaluationProcedures(db)
