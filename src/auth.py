"""Firebase Authentication dependencies for the routine and session APIs."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from firebase_admin import auth
from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import get_db
from firebase_config import get_firebase_auth
from models import UserDB


class FirebaseUser(BaseModel):
    """A verified Firebase user, decoded from the request's ID token."""

    uid: str  # Firebase UID
    email: Optional[str] = None
    email_verified: bool = False

    # Additional Firebase claims
    claims: dict = {}


class AuthenticatedUser(BaseModel):
    """Firebase identity plus the local user that owns routines and sessions."""

    firebase_uid: str
    user_id: UUID  # Local database user ID
    email: str
    firebase_user: FirebaseUser


def extract_token_from_request(request: Request) -> Optional[str]:
    """Extract Bearer token from Authorization header.

    Returns:
        Token string or None if not present
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    return auth_header[7:]  # Remove "Bearer " prefix


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(auth_instance, token: str) -> FirebaseUser:
    """Verify an ID token with Firebase and wrap its claims.

    Raises:
        HTTPException: 401 if the token is invalid or expired
    """
    try:
        decoded_token = auth_instance.verify_id_token(token)
    except auth.ExpiredIdTokenError as err:
        raise _unauthorized("Authentication token has expired") from err
    except auth.InvalidIdTokenError as err:
        raise _unauthorized("Invalid authentication token") from err
    except Exception as e:
        # Catch any other Firebase auth errors
        logger.warning("Firebase token verification failed", error=str(e))
        raise _unauthorized(f"Authentication failed: {str(e)}") from e

    return FirebaseUser(
        uid=decoded_token["uid"],
        email=decoded_token.get("email"),
        email_verified=decoded_token.get("email_verified", False),
        claims=decoded_token,
    )


async def verify_firebase_token(
    request: Request,
    auth_instance: auth = Depends(get_firebase_auth),
) -> FirebaseUser:
    """Verify the request's Firebase ID token.

    Raises:
        HTTPException: 401 if token is invalid/missing
    """
    token = extract_token_from_request(request)

    if not token:
        raise _unauthorized("Missing authentication token")

    return decode_token(auth_instance, token)


async def get_or_create_user(
    firebase_user: FirebaseUser = Depends(verify_firebase_token),
    db: Session = Depends(get_db),
) -> AuthenticatedUser:
    """Resolve the local user for a Firebase login, creating it on first use.

    Every routine and session endpoint depends on this; the returned
    ``user_id`` scopes all store queries.

    Raises:
        HTTPException: 401 if the token carries no email
        HTTPException: 500 if user creation fails
    """
    if not firebase_user.email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User email is required",
        )

    user = db.query(UserDB).filter(UserDB.firebase_uid == firebase_user.uid).first()

    # First-time login
    if not user:
        try:
            user = UserDB(
                firebase_uid=firebase_user.uid,
                email=firebase_user.email,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
        except SQLAlchemyError as e:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to create user: {str(e)}",
            ) from e
        logger.info("Created local user", user_id=str(user.id))

    return AuthenticatedUser(
        firebase_uid=firebase_user.uid,
        user_id=user.id,
        email=user.email,
        firebase_user=firebase_user,
    )
