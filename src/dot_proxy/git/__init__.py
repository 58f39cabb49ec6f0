"""Single-repository git wrapper for dot"""

from .operations import *

__all__ = [
    "EMPTY_TREE_SHA",
    "describe_git_error",
    "get_git_user",
    "get_remote_url",
    "git_add",
    "git_clone",
    "git_commit",
    "git_current_branch",
    "git_fetch",
    "git_has_staged_changes",
    "git_head_commit",
    "git_head_tree",
    "git_init",
    "git_is_ahead",
    "git_push",
    "git_read_tree",
    "git_remote_branch_sha",
    "git_remove_remote",
    "git_reset_hard",
    "git_reset_soft",
    "git_set_remote",
    "git_status",
    "git_unset_head",
    "git_write_tree",
    "is_git_repository",
    "is_push_rejection",
    "open_repo",
]
