"""
Prompt lifecycle state machine

    pending -> active -> closed -> converted

closed and converted are terminal: a prompt never reopens.
"""

import logging

from ...models import (
    PROMPT_ACTIVE,
    PROMPT_CLOSED,
    PROMPT_CONVERTED,
    PROMPT_PENDING,
    AvailabilityPrompt,
)
from ...timeutils import utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PROMPT_PENDING: [PROMPT_ACTIVE],
    PROMPT_ACTIVE: [PROMPT_CLOSED],
    PROMPT_CLOSED: [PROMPT_CONVERTED],
    PROMPT_CONVERTED: [],
}

OPEN_STATUSES = (PROMPT_PENDING, PROMPT_ACTIVE)
TERMINAL_STATUSES = (PROMPT_CLOSED, PROMPT_CONVERTED)


class LifecycleError(Exception):
    """Base for prompt lifecycle violations (reported as not actionable)"""


class InvalidTransition(LifecycleError):
    def __init__(self, prompt_id: str, current: str, target: str):
        self.prompt_id = prompt_id
        self.current = current
        self.target = target
        super().__init__(f"Prompt {prompt_id} cannot move from {current} to {target}")


class PromptAlreadyExists(LifecycleError):
    def __init__(self, group_id: str, week: str, prompt_id: str = None):
        self.group_id = group_id
        self.week = week
        self.prompt_id = prompt_id
        super().__init__(f"A prompt already exists for group {group_id} in week {week}")


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])


def transition(prompt: AvailabilityPrompt, target: str) -> AvailabilityPrompt:
    """
    Move a prompt to `target`. The caller commits.

    Raises:
        InvalidTransition: when the move is not an allowed edge
    """
    current = prompt.status
    if not can_transition(current, target):
        raise InvalidTransition(prompt.id, current, target)

    prompt.status = target
    prompt.updated_at = utcnow()
    logger.info(f"🔄 Prompt {prompt.id}: {current} → {target}")
    return prompt
