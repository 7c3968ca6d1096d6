"""
Approval Engine Configuration

Environment variables and settings for the invoice approval engine.
"""

import os
from dataclasses import dataclass


@dataclass
class ApprovalConfig:
    """Approval engine settings."""

    # Chain resolution
    MAX_CHAIN_DEPTH: int = 50             # Approver-of-approver hops before giving up

    # Inbox
    INBOX_LIMIT: int = 50                 # Pending steps returned per inbox call

    # Submission
    DEFAULT_POLICY: str = 'manager'       # Used when invoice has no approval_policy

    @classmethod
    def from_env(cls) -> 'ApprovalConfig':
        """Load configuration from environment variables."""
        return cls(
            MAX_CHAIN_DEPTH=int(os.environ.get('APPROVAL_MAX_CHAIN_DEPTH', '50')),
            INBOX_LIMIT=int(os.environ.get('APPROVAL_INBOX_LIMIT', '50')),
            DEFAULT_POLICY=os.environ.get('APPROVAL_DEFAULT_POLICY', 'manager'),
        )


config = ApprovalConfig.from_env()
