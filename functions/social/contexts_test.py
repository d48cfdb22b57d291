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


import unittest

from shared.types import Context, VoteValue
from social import contexts


def _context(**kwargs) -> Context:
    return Context(id="c1", post_id="p1", user_id="author", text="note", **kwargs)


class ContextRulesTest(unittest.TestCase):

    def vote_many(self, ups: int, downs: int) -> Context:
        context = _context()
        for i in range(ups):
            contexts.apply_vote(context, f"up{i}", VoteValue.UP)
        for i in range(downs):
            contexts.apply_vote(context, f"down{i}", "down")
        return context

    def test_approval_rate_without_votes(self):
        self.assertEqual(contexts.approval_rate(0, 0), 0.0)

    def test_ninety_percent_is_approved(self):
        context = self.vote_many(9, 1)
        self.assertEqual(context.approval_rate, 90)
        self.assertTrue(context.approved)

    def test_eighty_percent_is_not_approved(self):
        context = self.vote_many(8, 2)
        self.assertEqual(context.approval_rate, 80)
        self.assertFalse(context.approved)

    def test_revote_replaces_previous_vote(self):
        context = _context()
        contexts.apply_vote(context, "u1", VoteValue.UP)
        contexts.apply_vote(context, "u1", VoteValue.UP)
        self.assertEqual((context.upvotes, context.downvotes), (1, 0))
        self.assertEqual(len(context.votes), 1)

        contexts.apply_vote(context, "u1", VoteValue.DOWN)
        self.assertEqual((context.upvotes, context.downvotes), (0, 1))
        self.assertEqual(context.votes[0].vote, VoteValue.DOWN)
        self.assertEqual(context.approval_rate, 0)

    def test_admin_approval_overrides_votes(self):
        context = self.vote_many(0, 3)
        self.assertFalse(contexts.is_context_approved(context))
        context.admin_approved = True
        self.assertTrue(contexts.is_context_approved(context))

    def test_vote_changes_serializes_votes(self):
        context = self.vote_many(1, 0)
        changes = contexts.vote_changes(context)
        self.assertEqual(changes["votes"], [{"user_id": "up0", "vote": "up"}])
        self.assertEqual(changes["upvotes"], 1)
        self.assertTrue(changes["approved"])

    def test_vote_result(self):
        result = contexts.vote_result(self.vote_many(3, 1))
        self.assertEqual(result.approval_rate, 75)
        self.assertFalse(result.approved)


if __name__ == "__main__":
    unittest.main()
