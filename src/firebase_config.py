"""Firebase Admin SDK initialization."""

import os
from functools import lru_cache

import firebase_admin
from firebase_admin import auth, credentials
from loguru import logger


@lru_cache(maxsize=1)
def initialize_firebase() -> firebase_admin.App:
    """Initialize Firebase Admin SDK once per process.

    Uses the service account file from ``FIREBASE_SERVICE_ACCOUNT_KEY_PATH``
    when it exists, Application Default Credentials otherwise.

    Raises:
        ValueError: If FIREBASE_PROJECT_ID is missing
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass  # Not initialized yet

    project_id = os.environ.get("FIREBASE_PROJECT_ID")
    service_account_path = os.environ.get("FIREBASE_SERVICE_ACCOUNT_KEY_PATH")

    if not project_id:
        raise ValueError("FIREBASE_PROJECT_ID environment variable is required")

    if service_account_path and os.path.exists(service_account_path):
        logger.info("Initializing Firebase with service account", project_id=project_id)
        return firebase_admin.initialize_app(credentials.Certificate(service_account_path))

    logger.info("Initializing Firebase with default credentials", project_id=project_id)
    return firebase_admin.initialize_app(
        credentials.ApplicationDefault(), {"projectId": project_id}
    )


def get_firebase_auth() -> auth:
    """FastAPI dependency returning the initialized ``firebase_admin.auth``."""
    initialize_firebase()
    return auth
