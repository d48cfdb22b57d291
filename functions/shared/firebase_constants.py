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

USERS_COLLECTION = "users"
POSTS_COLLECTION = "posts"
CONTEXTS_COLLECTION = "contexts"
COMMENTS_COLLECTION = "comments"
FOLLOWS_COLLECTION = "follows"
NOTIFICATIONS_COLLECTION = "notifications"
SAVED_POSTS_COLLECTION = "saved_posts"
REPORTS_COLLECTION = "reports"

ALL_COLLECTIONS = (
    USERS_COLLECTION,
    POSTS_COLLECTION,
    CONTEXTS_COLLECTION,
    COMMENTS_COLLECTION,
    FOLLOWS_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    SAVED_POSTS_COLLECTION,
    REPORTS_COLLECTION,
)

# Local store keys.
LOCAL_NAMESPACE = "demo_"
SESSION_USER_KEY = "arthub_user"
SESSION_TOKEN_KEY = "arthub_token"
SESSION_TOKEN_PREFIX = "demo_token_"

# Listener key the feed subscription is registered under.
FEED_SUBSCRIPTION_KEY = "feedSubscription"
