import logging
import os

import firebase_admin
from dotenv import load_dotenv
from firebase_admin import credentials, db

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Path to Firebase service account JSON
FIREBASE_CRED_PATH = os.getenv("FIREBASE_CRED_JSON", "./serviceAccount.json")
FIREBASE_DB_URL = os.getenv("FIREBASE_DB_URL", "")


def init_firebase():
    # Initialize Firebase app if not already initialized
    if firebase_admin._apps:
        return
    try:
        cred = credentials.Certificate(FIREBASE_CRED_PATH)
        firebase_admin.initialize_app(cred, {
            "databaseURL": FIREBASE_DB_URL
        })
        logger.info("Firebase initialized")
    except Exception as e:
        raise RuntimeError(f"Firebase initialization failed: {e}") from e


def get_db_ref():
    """Firebase root DB reference. Used as a FastAPI dependency so tests can swap it."""
    init_firebase()
    return db.reference("/")


# Utility to fetch coupon usage by session ID
def get_session_usage(ref, session_id):
    if not session_id:
        return None
    return ref.child("couponUsage").child(session_id).get()
