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

"""Vote tally and approval rules for post contexts."""

from dataclasses import asdict
from typing import Optional

from shared.constants import CONTEXT_APPROVAL_THRESHOLD
from shared.types import Context, ContextVote, VoteResult, VoteValue


def approval_rate(upvotes: int, downvotes: int) -> float:
    """Percentage of upvotes; 0 when nobody has voted."""
    total = upvotes + downvotes
    if total <= 0:
        return 0.0
    return upvotes * 100 / total


def apply_vote(context: Context, user_id: str, vote: VoteValue | str) -> Context:
    """
    Replaces user_id's vote on the context in place and recomputes approval.

    A previous vote by the same user is removed along with its contribution
    to the tally, so repeating a vote leaves the tally unchanged.
    """
    vote = VoteValue(vote)
    previous: Optional[ContextVote] = None
    for existing in context.votes:
        if existing.user_id == user_id:
            previous = existing
            break

    if previous is not None:
        context.votes.remove(previous)
        if previous.vote == VoteValue.UP:
            context.upvotes = max(0, context.upvotes - 1)
        else:
            context.downvotes = max(0, context.downvotes - 1)

    context.votes.append(ContextVote(user_id=user_id, vote=vote))
    if vote == VoteValue.UP:
        context.upvotes += 1
    else:
        context.downvotes += 1

    context.approval_rate = approval_rate(context.upvotes, context.downvotes)
    context.approved = context.approval_rate >= CONTEXT_APPROVAL_THRESHOLD
    return context


def vote_changes(context: Context) -> dict:
    """Fields written back to storage after apply_vote."""
    return {
        "votes": [asdict(v) for v in context.votes],
        "upvotes": context.upvotes,
        "downvotes": context.downvotes,
        "approval_rate": context.approval_rate,
        "approved": context.approved,
    }


def vote_result(context: Context) -> VoteResult:
    return VoteResult(
        approved=context.approved,
        approval_rate=context.approval_rate,
        upvotes=context.upvotes,
        downvotes=context.downvotes,
    )


def is_context_approved(context: Context) -> bool:
    return context.is_approved
