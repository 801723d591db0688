# ============================================================================
# STATE SERVICE
# ============================================================================
# STATUS: Core - Recorded state persistence
# PURPOSE: Load and atomically save StackState as JSON
# CREATED: 16 OCT 2026
# ============================================================================
"""
State Service

Persists the StackState that maps declared nodes to the objects providers
actually created. The reconciler saves after every successful node, so the
file always describes a consistent prefix of the run.

Writes are atomic (temp file + os.replace) and the file is created with
0600 permissions: it holds provider outputs and may hold credentials.

With path=None the state is kept in memory (tests, dry runs).
"""

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from core.errors import StateError
from core.models import StackState

logger = logging.getLogger(__name__)


class StateService:
    """Service for loading and saving stack state."""

    def __init__(self, path: Optional[str] = None):
        """
        Initialize state service.

        Args:
            path: JSON state file. None keeps state in memory only.
        """
        self.path = Path(path) if path else None
        self._memory: Optional[StackState] = None

    def load(self, stack: str) -> StackState:
        """
        Load recorded state for a stack.

        Returns an empty StackState when nothing has been recorded yet.

        Raises:
            StateError: file unreadable, malformed, or for another stack
        """
        if self.path is None:
            if self._memory is None:
                return StackState(stack=stack)
            state = self._memory.model_copy(deep=True)
        elif not self.path.exists():
            logger.info(f"No state file at {self.path}, starting empty")
            return StackState(stack=stack)
        else:
            try:
                state = StackState.model_validate_json(self.path.read_text())
            except (OSError, ValidationError) as e:
                raise StateError(f"Cannot read state file {self.path}: {e}") from e

        if state.stack != stack:
            raise StateError(
                f"State belongs to stack '{state.stack}', not '{stack}'"
            )
        return state

    def save(self, state: StackState) -> None:
        """
        Save state, incrementing its serial.

        Raises:
            StateError: file cannot be written
        """
        state.serial += 1
        state.updated_at = datetime.now(timezone.utc)

        if self.path is None:
            self._memory = state.model_copy(deep=True)
            return

        data = state.model_dump_json(indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(data)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StateError(f"Cannot write state file {self.path}: {e}") from e

        logger.debug(f"Saved state serial={state.serial} to {self.path}")

    def exists(self) -> bool:
        if self.path is None:
            return self._memory is not None
        return self.path.exists()
