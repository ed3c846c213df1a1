"""Default prompt text for reviewer and reviewee turns."""

from __future__ import annotations

from ai_rally.diff_utils import summarize_diff
from ai_rally.models import Context, ReviewerOutput

NO_DESCRIPTION = "(No description provided)"


def _pr_header(context: Context) -> str:
    return f"Repository: {context.repo}\nPR #{context.pr_number}: {context.pr_title}"


def _bullets(items: list[str], empty: str = "None") -> str:
    if not items:
        return empty
    return "\n".join(f"- {item}" for item in items)


class PromptBuilder:
    """Builds the text sent on each turn.

    Subclass and override individual methods to change wording; the
    orchestrator treats the returned strings as opaque.
    """

    def reviewer(self, context: Context, iteration: int) -> str:
        return f"""You are reviewing a GitHub pull request.

## Context

{_pr_header(context)}

### PR Description
{context.pr_body or NO_DESCRIPTION}

### Files Changed
{summarize_diff(context.diff)}

### Diff
```diff
{context.diff}
```

## Your Task

This is review iteration {iteration}.

1. Review the changes in the diff.
2. Look for bugs, security problems, performance issues, style drift,
   and missing tests or documentation.
3. Decide:
   - "approve" when the change is ready to merge
   - "request_changes" when something must be fixed first
   - "comment" when you only have non-blocking suggestions
4. List every blocking issue that has to be resolved before approval.

## Output Format

Respond with a JSON object matching the provided schema. Reference file paths
and line numbers in your comments."""

    def reviewee(self, context: Context, review: ReviewerOutput, iteration: int) -> str:
        comments = _bullets(
            [
                f"[{comment.severity}] {comment.path}:{comment.line}: {comment.body}"
                for comment in review.comments
            ]
        )
        return f"""You are the author of a pull request and must address review feedback.

## Context

{_pr_header(context)}

## Review Feedback (Iteration {iteration})

### Summary
{review.summary}

### Review Action: {review.action}

### Comments
{comments}

### Blocking Issues
{_bullets(review.blocking_issues)}

## Your Task

1. Address every blocking issue and review comment.
2. Make the code changes in the working tree. Do not push.
3. If something is unclear, set status to "needs_clarification" and ask a question.
4. If a change needs approval first (new dependencies, destructive commands),
   set status to "needs_permission" and describe the action and reason.

## Output Format

Respond with a JSON object matching the provided schema and list every file
you modified in "files_modified"."""

    def rereview(self, context: Context, iteration: int, changes_summary: str) -> str:
        return f"""The author has updated the pull request based on your feedback.

## Context

{_pr_header(context)}

## Changes Made (Iteration {iteration})
{changes_summary}

## Your Task

1. Re-review the changes.
2. Check whether the blocking issues were addressed.
3. Look for new problems introduced by the fixes.
4. Decide whether the PR is ready to merge.

## Output Format

Respond with a JSON object matching the provided schema."""

    def clarification_question(self, question: str) -> str:
        return f"""The author has a question about your review feedback:

## Question
{question}

Answer it clearly in your summary so they can continue with the fixes."""

    def clarification_answer(self, answer: str) -> str:
        return f"""Answer to your question:

{answer}

Continue addressing the review feedback."""

    def permission_granted(self, action: str) -> str:
        return f"""Permission has been granted for the following action:

{action}

Proceed with the implementation."""

    def permission_denied(self, action: str, reason: str) -> str:
        return f"""The author asked to perform the following action and was refused:

Action: {action}
Reason given: {reason}

Review the current state of the pull request without that change."""
