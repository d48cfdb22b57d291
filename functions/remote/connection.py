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

"""The process-wide Firestore handle."""

from __future__ import annotations

import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials
from google.cloud import firestore

from shared.config import Settings

logger = logging.getLogger(__name__)

HEALTH_COLLECTION = "_health"
HEALTH_DOCUMENT = "ping"


def initialize_firebase_app(settings: Settings) -> firebase_admin.App:
    """Returns the default Firebase app, initializing it on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if settings.firebase_credentials_path:
        cred = credentials.Certificate(settings.firebase_credentials_path)
    else:
        cred = credentials.ApplicationDefault()
    options = None
    if settings.firebase_project_id:
        options = {"projectId": settings.firebase_project_id}
    return firebase_admin.initialize_app(cred, options)


class FirestoreConnection:
    """
    Holds the Firestore clients shared by every repository.

    Operations use the async client; real-time listeners use the sync
    client, whose watch streams run on background threads. Only the
    ConnectionResilienceManager calls enable_network and disable_network.
    """

    def __init__(self, app: firebase_admin.App, database: Optional[str] = None):
        self.app = app
        self.database = database
        self.enabled = True
        self._client: Optional[firestore.AsyncClient] = None
        self._watch_client: Optional[firestore.Client] = None

    def _client_kwargs(self) -> dict:
        kwargs = {
            "project": self.app.project_id,
            "credentials": self.app.credential.get_credential(),
        }
        if self.database:
            kwargs["database"] = self.database
        return kwargs

    def _check_enabled(self) -> None:
        if not self.enabled:
            raise ConnectionError("Firestore network is disabled")

    @property
    def client(self) -> firestore.AsyncClient:
        self._check_enabled()
        if self._client is None:
            self._client = firestore.AsyncClient(**self._client_kwargs())
        return self._client

    @property
    def watch_client(self) -> firestore.Client:
        self._check_enabled()
        if self._watch_client is None:
            self._watch_client = firestore.Client(**self._client_kwargs())
        return self._watch_client

    async def enable_network(self) -> None:
        """Reopens the clients if needed and confirms the backend answers."""
        self.enabled = True
        probe = self.client.collection(HEALTH_COLLECTION).document(HEALTH_DOCUMENT)
        await probe.get()

    async def disable_network(self) -> None:
        self.enabled = False
        self._client = None
        self._watch_client = None
        logger.info("Firestore clients released")
