from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Policies applied by the lifecycle engine."""

    # Require checklist writes to target the instance's current state.
    enforce_checklist_state: bool = False
    purge_history_on_dissociate: bool = False
    history_page_size: int = Field(default=100, gt=0)


class StoreConfig(BaseModel):
    """Settings passed to the store backend."""

    timeout: float = Field(default=30.0, gt=0)


class LcmConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()
    store: StoreConfig = StoreConfig()


def load_config(path: Optional[str] = None) -> LcmConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to LCM_CONFIG env
            variable or 'lcm.yaml' in the current directory.
    """

    config_path = path or os.getenv("LCM_CONFIG", "lcm.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = LcmConfig(**data)
    else:
        config = LcmConfig()

    env_db_url = os.getenv("LCM_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
