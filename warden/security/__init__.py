"""Warden security layer.

Exports the command and path gates, the failure taxonomy, secret
scrubbing and rate limiting.
"""

from warden.security.commands import (
    DEFAULT_POLICY,
    CommandGate,
    CommandPolicy,
    CommandResult,
    CommandRule,
    allowed_commands,
    is_command_allowed,
)
from warden.security.errors import (
    AccessDenied,
    FailureReason,
    IsolationViolation,
    LifecycleFailure,
    PolicyViolation,
    SandboxError,
)
from warden.security.paths import (
    ContentCheck,
    PathCheck,
    PathGate,
    PathPolicy,
    check_content,
    is_safe_extension,
    validate_context_dir,
)
from warden.security.ratelimit import (
    RateLimitDecision,
    RateLimiter,
    RateLimitStatus,
)
from warden.security.scrub import (
    ScrubResult,
    count_potential_secrets,
    scrub_sensitive_data,
    truncate_text,
)

__all__ = [
    # commands
    "DEFAULT_POLICY",
    "CommandGate",
    "CommandPolicy",
    "CommandResult",
    "CommandRule",
    "allowed_commands",
    "is_command_allowed",
    # errors
    "AccessDenied",
    "FailureReason",
    "IsolationViolation",
    "LifecycleFailure",
    "PolicyViolation",
    "SandboxError",
    # paths
    "ContentCheck",
    "PathCheck",
    "PathGate",
    "PathPolicy",
    "check_content",
    "is_safe_extension",
    "validate_context_dir",
    # ratelimit
    "RateLimitDecision",
    "RateLimiter",
    "RateLimitStatus",
    # scrub
    "ScrubResult",
    "count_potential_secrets",
    "scrub_sensitive_data",
    "truncate_text",
]
