# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
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

"""Tests for the line diff engine."""

import pytest

from patchwarden.engine.diff import diff_mutation, diff_mutations, diff_texts
from patchwarden.engine.types import Mutation, MutationType


class TestDiffTexts:
    """Tests for update diffs."""

    def test_identical_texts_are_all_context(self):
        record = diff_texts("a\nb", "a\nb", "f.txt")

        assert record.diff_text == "--- f.txt\n+++ f.txt\n a\n b"
        assert record.additions == 0
        assert record.deletions == 0

    def test_single_line_change(self):
        record = diff_texts("const x=1;", "const x=2;", "src/a.js")

        assert record.change_type == MutationType.UPDATE
        assert record.body_lines() == ["+const x=2;", "-const x=1;"]
        assert record.additions == 1
        assert record.deletions == 1

    def test_inserted_line_keeps_following_context(self):
        record = diff_texts("a\nc", "a\nb\nc", "f")

        assert record.body_lines() == [" a", "+b", " c"]

    def test_removed_line(self):
        record = diff_texts("a\nb\nc", "a\nc", "f")

        assert record.body_lines() == [" a", "-b", " c"]
        assert record.deletions == 1

    def test_headers_for_update(self):
        record = diff_texts("", "x", "path/to/file.py")

        lines = record.diff_text.split("\n")
        assert lines[0] == "--- path/to/file.py"
        assert lines[1] == "+++ path/to/file.py"

    @pytest.mark.parametrize(
        "original,modified",
        [
            ("", ""),
            ("a\nb\nc", "c\nb\na"),
            ("x\nx\ny", "y\nx"),
            ("line\n", "line\n\n"),
            ("one\ntwo\nthree", ""),
        ],
    )
    def test_reconstructs_both_sides(self, original, modified):
        record = diff_texts(original, modified, "f")

        assert record.reconstruct_original() == original
        assert record.reconstruct_modified() == modified


class TestDiffMutation:
    """Tests for per-mutation diffs."""

    def test_create_is_all_additions(self):
        record = diff_mutation(Mutation.create("src/a.js", "one\ntwo"))

        assert record.diff_text == "+++ src/a.js\n+one\n+two"
        assert record.additions == 2
        assert record.deletions == 0
        assert record.reconstruct_modified() == "one\ntwo"

    def test_delete_is_all_deletions(self):
        record = diff_mutation(Mutation.delete("src/a.js", original="one\ntwo"))

        assert record.diff_text == "--- src/a.js\n-one\n-two"
        assert record.additions == 0
        assert record.deletions == 2
        assert record.reconstruct_original() == "one\ntwo"

    def test_update_without_original_diffs_against_empty(self):
        record = diff_mutation(Mutation.update("a.txt", "new"))

        assert record.reconstruct_original() == ""
        assert record.reconstruct_modified() == "new"

    def test_original_override_wins(self):
        mutation = Mutation.update("a.txt", "new", original="stale")

        record = diff_mutation(mutation, original_override="on disk")

        assert record.reconstruct_original() == "on disk"

    def test_diff_mutations_one_record_each(self):
        records = diff_mutations(
            [Mutation.create("a", "1"), Mutation.update("b", "2", original="1"), Mutation.delete("c", original="3")]
        )

        assert [r.path for r in records] == ["a", "b", "c"]
        assert [r.change_type for r in records] == [
            MutationType.CREATE,
            MutationType.UPDATE,
            MutationType.DELETE,
        ]

    def test_to_dict(self):
        record = diff_mutation(Mutation.create("a", "1"))

        data = record.to_dict()

        assert data == {
            "path": "a",
            "change_type": "create",
            "diff": "+++ a\n+1",
            "additions": 1,
            "deletions": 0,
        }
