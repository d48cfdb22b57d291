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

"""Chooses the Firestore-backed or the offline client at startup."""

from __future__ import annotations

import logging
from typing import Optional

from shared.config import Settings, get_settings
from social.client import SocialClient

logger = logging.getLogger(__name__)


def create_client(settings: Optional[Settings] = None) -> SocialClient:
    """
    Returns a RemoteClient when Firebase is configured and reachable at
    construction, otherwise an OfflineClient over the local store.
    """
    settings = settings or get_settings()
    if settings.firebase_configured and not settings.use_in_memory_backends:
        try:
            from remote.client import create_remote_client

            return create_remote_client(settings)
        except Exception as e:
            logger.warning("Firebase unavailable, using the offline store: %s", e)

    from local_store.client import create_offline_client

    return create_offline_client(settings)
