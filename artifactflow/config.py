# artifactflow/config.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import commentjson
from dotenv import load_dotenv

load_dotenv()

REPO_ROOT = Path(__file__).resolve().parent.parent


def _csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


# --- Type lookup cache ---
TYPE_CACHE_TTL_SECONDS = int(os.getenv("TYPE_CACHE_TTL_SECONDS", "300"))

# Artifact types that may have more than one instance per project
MULTI_INSTANCE_ARTIFACT_TYPES = _csv_env("MULTI_INSTANCE_ARTIFACT_TYPES", "Use Cases,C4 Component Diagram")

# --- Interaction windows ---
INTERACTION_WINDOW = int(os.getenv("INTERACTION_WINDOW", "3"))
ARTIFACT_DETAILS_HISTORY = int(os.getenv("ARTIFACT_DETAILS_HISTORY", "10"))

# --- LLM ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")
DEFAULT_LLM_MODEL = os.getenv("DEFAULT_LLM_MODEL", "gemini-2.5-flash-lite")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "300"))
AI_LOG_DIR = os.getenv("AI_LOG_DIR") or None

# --- Catalog ---
PROJECT_TYPES_CATALOG_PATH = os.getenv(
    "PROJECT_TYPES_CATALOG_PATH",
    str(REPO_ROOT / "project_types.jsonc"),
)


def load_project_type_catalog(path: str | None = None) -> Dict[str, Any]:
    """
    Load the project-type catalog from a JSON-with-comments file.
    Fails fast if the file or the top-level `project_types` list is missing.
    """
    cfg_path = Path(path or PROJECT_TYPES_CATALOG_PATH)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Project type catalog not found at '{cfg_path}'.")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if not isinstance(data, dict) or not isinstance(data.get("project_types"), list):
        raise ValueError("Project type catalog missing or invalid key: project_types")

    for pt in data["project_types"]:
        for key in ("name", "phases"):
            if key not in pt:
                raise ValueError(f"Project type entry missing key: {key}")

    return data
