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

"""Errors raised by the social service and its storage backends."""


class SocialError(Exception):
    """Base class for errors surfaced to callers of the service."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SocialError):
    """Missing or invalid input."""


class CooldownError(ValidationError):
    """A rate-limited profile change was attempted too soon."""


class AuthenticationError(SocialError):
    """No authenticated user, or credentials did not match."""


class PermissionDeniedError(SocialError):
    """The caller is authenticated but not allowed to do this."""


class NotFoundError(SocialError):
    pass


class ConflictError(SocialError):
    pass


class StorageError(SocialError):
    """A storage backend failed; the original error is chained as __cause__."""


class StorageQuotaError(StorageError):
    """A field is larger than the document store accepts."""


class ConnectionLostError(StorageError):
    """Connection retries were exhausted."""


class UnsupportedOperationError(SocialError):
    """The configured storage backend cannot perform this operation."""
