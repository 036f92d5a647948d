"""
Violation Debouncer - Edge detector over a stream of classifications

Only entry into a violation condition is reported. A condition that
persists across samples is suppressed, returning to normal clears the
state silently, and switching between two violation conditions counts
as a new entry.
"""

import logging
from typing import Optional

from ..exam.models import Violation
from .classifier import Classification

logger = logging.getLogger(__name__)


class ViolationDebouncer:
    """Per-modality debouncer; initial state is 'none'"""

    def __init__(self, name: str = ""):
        self.name = name
        self._previous: Optional[Classification] = None

    @property
    def active(self) -> Optional[Classification]:
        """The violation condition currently in effect, if any"""
        return self._previous

    def update(self, classification: Classification) -> Optional[Violation]:
        """
        Feed one classification.

        Returns:
            A new Violation on entry into a (different) violation condition,
            otherwise None
        """
        key = classification.key
        previous_key = self._previous.key if self._previous is not None else None

        if key is None:
            if previous_key is not None:
                logger.debug(f"[{self.name}] cleared {previous_key[0].value}")
            self._previous = None
            return None

        if key == previous_key:
            return None

        self._previous = classification
        return Violation(kind=classification.kind, description=classification.description)

    def reset(self):
        self._previous = None
