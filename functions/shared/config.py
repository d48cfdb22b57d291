# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""
Configuration shared by the offline, remote and REST deployments.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Relational store for the REST backend, e.g. postgresql+asyncpg://...
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Offline client storage; Redis wins over the JSON file when both are set.
    redis_url: Optional[str] = Field(default=None)
    local_store_path: Optional[str] = Field(default=None)
    local_store_namespace: str = Field(default="demo_")

    # Auth
    jwt_secret: str = Field(default="dev_secret_change_me")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_days: int = Field(default=7)
    bcrypt_rounds: int = Field(default=10)
    # None keeps each backend's own posture (bcrypt for REST, plaintext otherwise).
    hash_passwords: Optional[bool] = Field(default=None)
    privileged_usernames: list[str] = Field(default_factory=lambda: ["Kiyoshi"])

    # Firestore
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_credentials_path: Optional[str] = Field(default=None)
    firestore_database: Optional[str] = Field(default=None)

    # Connection resilience
    health_check_interval_seconds: float = Field(default=30.0)
    health_check_timeout_seconds: float = Field(default=5.0)
    max_connection_retries: int = Field(default=3)

    @property
    def firebase_configured(self) -> bool:
        return bool(self.firebase_project_id or self.firebase_credentials_path)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
