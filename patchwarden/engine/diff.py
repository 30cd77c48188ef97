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

"""Line diffs for audit and preview.

The walk is deliberately not minimal: two cursors advance over the original
and modified lines. Equal lines are context; a modified line that never
reappears in the rest of the original is an addition; anything else is a
deletion. Every input line is emitted exactly once, so unchanged+added lines
rebuild the modified text and unchanged+deleted lines rebuild the original.
"""

from typing import Iterable, List, Optional

from patchwarden.engine.types import DiffRecord, Mutation, MutationType


def _split(text: str) -> List[str]:
    return text.split("\n")


def diff_texts(original: str, modified: str, path: str) -> DiffRecord:
    """Diff two texts as an update of ``path``."""
    original_lines = _split(original)
    modified_lines = _split(modified)

    out = [f"--- {path}", f"+++ {path}"]
    additions = 0
    deletions = 0
    i = 0
    j = 0

    while i < len(original_lines) or j < len(modified_lines):
        orig = original_lines[i] if i < len(original_lines) else None
        mod = modified_lines[j] if j < len(modified_lines) else None

        if orig is not None and orig == mod:
            out.append(f" {orig}")
            i += 1
            j += 1
        elif mod is not None and (orig is None or mod not in original_lines[i:]):
            out.append(f"+{mod}")
            additions += 1
            j += 1
        else:
            out.append(f"-{orig}")
            deletions += 1
            i += 1

    return DiffRecord(
        path=path,
        change_type=MutationType.UPDATE,
        diff_text="\n".join(out),
        additions=additions,
        deletions=deletions,
    )


def diff_mutation(mutation: Mutation, original_override: Optional[str] = None) -> DiffRecord:
    """Diff one mutation.

    Args:
        mutation: The mutation to diff
        original_override: On-disk text to use instead of ``original_content``

    Returns:
        DiffRecord for the mutation
    """
    original = original_override if original_override is not None else mutation.original_content

    if mutation.type == MutationType.CREATE:
        lines = _split(mutation.new_content or "")
        body = "\n".join(f"+{line}" for line in lines)
        return DiffRecord(
            path=mutation.path,
            change_type=MutationType.CREATE,
            diff_text=f"+++ {mutation.path}\n{body}",
            additions=len(lines),
            deletions=0,
        )

    if mutation.type == MutationType.DELETE:
        lines = _split(original or "")
        body = "\n".join(f"-{line}" for line in lines)
        return DiffRecord(
            path=mutation.path,
            change_type=MutationType.DELETE,
            diff_text=f"--- {mutation.path}\n{body}",
            additions=0,
            deletions=len(lines),
        )

    return diff_texts(original or "", mutation.new_content or "", mutation.path)


def diff_mutations(mutations: Iterable[Mutation]) -> List[DiffRecord]:
    """Diff a sequence of mutations, one record each."""
    return [diff_mutation(m) for m in mutations]
