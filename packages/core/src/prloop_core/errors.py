"""Collaborator failures.

Raised by the fix generators, the git workspace and the merge step, and
caught at the Orchestrator boundary where they become a failed StepResult,
a recorded fix attempt and a comment on the pull request.
"""


class CollaboratorError(Exception):
    """An external collaborator call failed."""


class FixGenerationError(CollaboratorError):
    """The fix generator timed out, errored, or produced no fixes."""


class WorkspaceError(CollaboratorError):
    """Cloning, applying changes to, or pushing the working copy failed."""


class MergeError(CollaboratorError):
    """The hosting platform refused or failed to merge the pull request."""
