"""GitHub-specific type definitions."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CommitStatusState = Literal["pending", "success", "failure", "error"]


class ReviewKey(BaseModel):
    """Deduplication identity of a review: one review per commit of a repository."""

    model_config = ConfigDict(frozen=True)

    repository: str
    commit_sha: str

    def __str__(self) -> str:
        return f"{self.repository}@{self.commit_sha[:7]}"


class ReviewRequest(BaseModel):
    """One unit of review work, as extracted from a pull request event.

    The pull request number is informational; the commit SHA identifies the
    review (see `key`).
    """

    model_config = ConfigDict(frozen=True)

    repository: str
    pr_number: int
    commit_sha: str

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        """Validate repository is in 'owner/repo' format."""
        if not v or not v.strip():
            raise ValueError("repository cannot be empty")

        parts = v.split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"repository must be in 'owner/repo' format, got: '{v}'")

        return v

    @field_validator("pr_number")
    @classmethod
    def validate_pr_number(cls, v: int) -> int:
        """Validate pr_number is positive."""
        if v <= 0:
            raise ValueError(f"pr_number must be positive (> 0), got: {v}")
        return v

    @field_validator("commit_sha")
    @classmethod
    def validate_commit_sha(cls, v: str) -> str:
        """Validate commit_sha is a non-empty hex string."""
        v = v.strip()
        if not v:
            raise ValueError("commit_sha cannot be empty")
        try:
            int(v, 16)
        except ValueError as err:
            raise ValueError(f"commit_sha must be hexadecimal, got: '{v}'") from err
        return v.lower()

    @property
    def key(self) -> ReviewKey:
        return ReviewKey(repository=self.repository, commit_sha=self.commit_sha)

    def __str__(self) -> str:
        return f"{self.repository}#{self.pr_number}@{self.commit_sha[:7]}"


class FileDiff(BaseModel):
    """File diff information from a pull request.

    Represents changes to a single file in a PR. GitHub omits the patch for
    binary files, very large diffs and pure renames.
    """

    filename: str
    patch: str | None = None
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    previous_filename: str | None = None

    @property
    def has_patch(self) -> bool:
        """Check whether there is a textual diff to analyze.

        Returns:
            True if the patch is present and not blank
        """
        return bool(self.patch and self.patch.strip())

    @property
    def is_renamed_file(self) -> bool:
        """Check if this file was renamed.

        Returns:
            True if the file status is "renamed"
        """
        return self.status == "renamed"


class CommitStatus(BaseModel):
    """Commit status payload as shown on the pull request checks list."""

    state: CommitStatusState
    description: str = Field(max_length=140)
    context: str
