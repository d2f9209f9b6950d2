# artifactflow/db_helpers.py
import logging
import os
from typing import Callable

from dotenv import load_dotenv
from google.auth import default as google_auth_default
from google.cloud import secretmanager
from google.oauth2 import service_account
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from artifactflow.config import PROJECT_ID

load_dotenv()

logger = logging.getLogger("artifactflow")

# --- Configuration ---
DATABASE_URL        = os.getenv("DATABASE_URL", "")
DB_HOST             = os.environ.get("DB_HOST", "localhost")
DB_PORT             = int(os.environ.get("DB_PORT", "5432"))
DB_NAME             = os.environ.get("DB_NAME", "artifactflow")
DB_USER             = os.environ.get("DB_USER", "postgres")
DB_PASSWORD         = os.environ.get("DB_PASSWORD")
DB_SECRET_ID        = os.environ.get("DB_SECRET_ID")
SQLITE_PATH         = os.environ.get("SQLITE_PATH", "artifactflow.db")

IS_LOCAL_DB = (DB_HOST == "localhost")


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


def get_db_password() -> str:
    global DB_PASSWORD

    if DB_PASSWORD:
        return DB_PASSWORD

    if DB_SECRET_ID:
        creds = _build_creds()
        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        name = client.secret_version_path(PROJECT_ID, DB_SECRET_ID, "latest")
        resp = client.access_secret_version(request={"name": name})
        DB_PASSWORD = resp.payload.data.decode("utf-8")
        return DB_PASSWORD

    raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")


def get_db_engine(url: str | None = None) -> Engine:
    url = url or DATABASE_URL
    if url:
        logger.info("[DB] Using DATABASE_URL engine")
        return create_engine(url, future=True, pool_pre_ping=True)

    if IS_LOCAL_DB:
        url = f"sqlite:///{SQLITE_PATH}"
        logger.info(f"[DB] Using SQLite URL: {url}")
        return create_engine(url, future=True)

    password = get_db_password()
    url = f"postgresql+pg8000://{DB_USER}:{password}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    logger.info(f"[DB] Connecting to Postgres at {DB_HOST}:{DB_PORT}/{DB_NAME}")

    # pg8000 supports 'timeout' in seconds
    return create_engine(
        url,
        connect_args={"timeout": 10},
        future=True,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine | None = None) -> Callable[[], Session]:
    """
    Sessions keep loaded attributes after commit so repositories can hand
    detached objects (with their eager-loaded relations) back to callers.
    """
    engine = engine or get_db_engine()
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )
