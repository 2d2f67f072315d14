"""Output models for the review pipeline."""

from typing import Any

from pydantic import BaseModel, Field

from gitfox.models.review_state import ReviewState

ANALYSIS_UNAVAILABLE_TEXT = (
    "⚠️ _Analysis unavailable: this file could not be analyzed._"
)


class FileReviewFragment(BaseModel):
    """Review text produced for one changed file.

    ``analyzed`` is False when the backend failed for this file and ``text``
    holds the placeholder instead of real feedback.
    """

    filename: str
    text: str
    analyzed: bool = True
    error: str | None = None

    @classmethod
    def unavailable(cls, filename: str, error: str | None = None) -> "FileReviewFragment":
        """Build the placeholder fragment for a file whose analysis failed."""
        return cls(
            filename=filename,
            text=ANALYSIS_UNAVAILABLE_TEXT,
            analyzed=False,
            error=error,
        )


class ReviewOutcome(BaseModel):
    """Final result of one review.

    Fragments are in the order of the files returned by the source-control API.
    """

    state: ReviewState
    fragments: list[FileReviewFragment] = Field(default_factory=list)
    skipped_files: list[str] = Field(default_factory=list)
    error_detail: str | None = None

    @property
    def failed_files(self) -> list[str]:
        """Files that have a placeholder instead of a real fragment.

        Returns:
            Filenames in fragment order
        """
        return [f.filename for f in self.fragments if not f.analyzed]

    @property
    def succeeded(self) -> bool:
        return self.state is ReviewState.SUCCEEDED

    def status_description(self) -> str:
        """Short commit status description for this outcome (max 140 chars)."""
        if self.state is ReviewState.FAILED:
            detail = self.error_detail or "unknown error"
            return f"AI review failed: {detail}"[:140]
        analyzed = len(self.fragments) - len(self.failed_files)
        description = f"AI review completed: {analyzed}/{len(self.fragments)} files analyzed"
        return description[:140]

    def format_comment_markdown(self, bot_name: str, commit_sha: str) -> str:
        """Format the fragments as one GitHub-flavored markdown comment.

        Returns:
            Markdown body suitable for an issue comment on the pull request
        """
        lines = [f"### 🤖 {bot_name} review for `{commit_sha[:7]}`\n"]

        if not self.fragments:
            lines.append("No reviewable file changes were found in this pull request.")
        for fragment in self.fragments:
            lines.append(f"📌 **{fragment.filename}**\n{fragment.text.strip()}\n")

        if self.failed_files:
            lines.append(
                f"_{len(self.failed_files)} of {len(self.fragments)} files could "
                f"not be analyzed._\n"
            )

        if self.skipped_files:
            lines.append("<details><summary>Skipped files (no textual diff)</summary>\n")
            for filename in self.skipped_files:
                lines.append(f"- `{filename}`")
            lines.append("\n</details>")

        return "\n".join(lines).rstrip() + "\n"

    def summary(self) -> dict[str, Any]:
        """Compact, JSON-friendly view for synchronous callers and job results."""
        return {
            "state": self.state.value,
            "files_analyzed": len(self.fragments) - len(self.failed_files),
            "files_failed": self.failed_files,
            "files_skipped": self.skipped_files,
            "error_detail": self.error_detail,
        }
