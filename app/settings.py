from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # JWT / Auth
    JWT_SECRET: Optional[str] = Field(None, description="Secret for verifying bearer tokens")
    JWT_ALGO: str = Field("HS256", description="JWT signing algorithm")

    # API keys: {"<key>": {"user_id": "...", "roles": [...], "group_ids": [...]}}
    API_KEYS_JSON: Optional[str] = Field(None, description="API key to user map, as JSON")

    # Roles given to unauthenticated callers (normally none)
    ANONYMOUS_ROLES: List[str] = Field(default_factory=list)

    @field_validator("JWT_ALGO")
    @classmethod
    def _jwt_algo_upper(cls, v: str) -> str:
        return (v or "HS256").upper()

    @field_validator("API_KEYS_JSON")
    @classmethod
    def _api_keys_valid_json(cls, v: Optional[str]) -> Optional[str]:
        if v:
            parsed = json.loads(v)
            if not isinstance(parsed, dict):
                raise ValueError("API_KEYS_JSON must be a JSON object")
        return v

    def api_key_map(self) -> Dict[str, Dict[str, Any]]:
        return json.loads(self.API_KEYS_JSON) if self.API_KEYS_JSON else {}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
