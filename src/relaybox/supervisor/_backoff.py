"""Linear backoff calculator for crash restarts."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class LinearBackoff:
    """Linear backoff with a fixed attempt budget.

    The delay formula is:
        delay = base * attempt

    Attributes:
        base: Delay in seconds for the first restart attempt.
        max_attempts: Number of restart attempts allowed.
    """

    base: float = 1.0
    max_attempts: int = 3

    def delay(self, attempt: int) -> float:
        """Calculate the delay for a given attempt number.

        Args:
            attempt: The attempt number (1-indexed, where 1 is the first retry).

        Returns:
            The delay in seconds before the restart attempt.
        """
        return self.base * max(attempt, 1)

    def allows(self, completed_attempts: int) -> bool:
        """Return whether another attempt fits in the budget.

        Args:
            completed_attempts: Restart attempts already made.
        """
        return completed_attempts < self.max_attempts
