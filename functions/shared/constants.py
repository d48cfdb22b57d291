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

ABOUT_ME_MAX_LENGTH = 500
MAX_USERNAME_HISTORY = 10
USERNAME_CHANGE_COOLDOWN_SECONDS = 7 * 24 * 60 * 60

NOTIFICATION_LIMIT = 50
REMOTE_FEED_LIMIT = 50
REST_FEED_LIMIT = 100
RECENT_COMMENTS_LIMIT = 3
TRENDING_TAGS_LIMIT = 15
MAX_USER_SUGGESTIONS = 50
NEW_POST_PREVIEW_LENGTH = 50

# Percentage of upvotes at which a context is approved by the community.
CONTEXT_APPROVAL_THRESHOLD = 90

# Profile pictures are stored inline as data URLs.
PROFILE_PICTURE_MAX_BYTES = 400_000
PROFILE_PICTURE_TARGET_BYTES = 350_000
PROFILE_PICTURE_EMERGENCY_BYTES = 200_000
FIRESTORE_MAX_FIELD_BYTES = 1_048_487
UPDATE_CHUNK_BYTES = 500_000

HIDDEN_BY_BAN_REASON = "User banned"
