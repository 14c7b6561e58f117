import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking.auth import jwt_handler
from booking.auth.principal import Principal
from booking.database import SessionLocal
from booking.models.user import User

security = HTTPBearer()


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        principal = Principal.from_role_name(user.id, user.role) if user is not None else None
    finally:
        db.close()
    if principal is None:
        raise HTTPException(status_code=401, detail="User not found")
    return principal
