"""Per-client admission control over a rolling window."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import replace

from consult_agent.config import RateLimitConfig
from consult_agent.types import ClientBudgetState

logger = logging.getLogger(__name__)


class RateLimiter:
    """Combines a request-count budget and a token budget per client.

    State is instance-owned and guarded by a single lock, so independent
    limiters (for example one per test) never share bookkeeping. `admit`
    returning False is a normal control-flow signal, not an error.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._states: dict[str, ClientBudgetState] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def admit(self, client_id: str, estimated_tokens: int = 0) -> bool:
        estimated_tokens = max(0, estimated_tokens)
        if estimated_tokens > self._config.max_tokens_per_request:
            logger.info(
                "Admission rejected: request exceeds per-request token ceiling",
                extra={"client_id": client_id, "estimated_tokens": estimated_tokens},
            )
            return False

        with self._lock:
            now = self._clock()
            state = self._states.get(client_id)

            if state is None or now - state.window_start >= self._config.window_seconds:
                self._states[client_id] = ClientBudgetState(
                    request_count=1,
                    tokens_consumed=estimated_tokens,
                    window_start=now,
                    last_request_at=now,
                )
                return True

            if state.request_count >= self._config.max_requests_per_window:
                reason = "request budget exhausted"
            elif state.tokens_consumed + estimated_tokens > self._config.max_tokens_per_window:
                reason = "token budget exhausted"
            else:
                state.request_count += 1
                state.tokens_consumed += estimated_tokens
                state.last_request_at = now
                return True

        logger.info(
            "Admission rejected: %s",
            reason,
            extra={"client_id": client_id, "estimated_tokens": estimated_tokens},
        )
        return False

    def reconcile(
        self, client_id: str, actual_tokens: int, *, estimated_tokens: int = 0
    ) -> None:
        """Replace a pre-call estimate with the real token cost.

        Adjusts the consumed tokens by `actual_tokens - estimated_tokens`,
        clamped at zero. Admission is never re-evaluated here.
        """

        with self._lock:
            state = self._states.get(client_id)
            if state is None:
                return
            delta = actual_tokens - estimated_tokens
            state.tokens_consumed = max(0, state.tokens_consumed + delta)

    def reset(self, client_id: str) -> None:
        with self._lock:
            self._states.pop(client_id, None)

    def sweep(self) -> int:
        """Drop every client whose window has fully elapsed."""
        with self._lock:
            now = self._clock()
            expired = [
                client_id
                for client_id, state in self._states.items()
                if now - state.window_start >= self._config.window_seconds
            ]
            for client_id in expired:
                del self._states[client_id]

        if expired:
            logger.debug("Swept %d expired rate-limit entries", len(expired))
        return len(expired)

    def client_state(self, client_id: str) -> ClientBudgetState | None:
        with self._lock:
            state = self._states.get(client_id)
            return replace(state) if state is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
