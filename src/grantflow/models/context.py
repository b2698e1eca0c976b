"""Per-dance authorization context."""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from grantflow.services.security import generate_state


@dataclass
class AuthContext:
    """Holds the CSRF state and redirect URL of the current dance.

    The state is generated on first read and cleared once a response
    carrying it has been accepted, so a replayed response is rejected.
    """

    _state: str = ""
    redirect_url: str | None = None

    @property
    def state(self) -> str:
        if not self._state:
            self._state = generate_state()
        return self._state

    def matches_state(self, state: str | None) -> bool:
        """Whether ``state`` equals the current, non-empty state."""
        if not state or not self._state:
            return False
        return secrets.compare_digest(self._state, state)

    def reset_state(self) -> None:
        self._state = ""
