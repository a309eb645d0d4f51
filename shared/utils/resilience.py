"""
shared/utils/resilience.py
Circuit breakers for outbound dependencies, one per named service.
"""

import logging

from pybreaker import CircuitBreaker, CircuitBreakerListener

from config.settings import settings

logger = logging.getLogger(__name__)


class LoggingListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(
            f"Circuit breaker '{cb.name}' {old_state.name if old_state else None} -> {new_state.name}"
        )


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream service."""

    def __init__(self, fail_max: int = None, reset_timeout: int = None):
        self.fail_max = fail_max or settings.NOTIFICATION_BREAKER_FAIL_MAX
        self.reset_timeout = reset_timeout or settings.NOTIFICATION_BREAKER_RESET_TIMEOUT
        self.breakers = {}

    def get_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        if service_name not in self.breakers:
            self.breakers[service_name] = CircuitBreaker(
                fail_max=self.fail_max,
                reset_timeout=self.reset_timeout,
                listeners=[LoggingListener()],
                name=service_name,
            )
        return self.breakers[service_name]


circuit_breaker_manager = CircuitBreakerManager()
