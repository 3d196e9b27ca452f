"""
Breaker Module - Black Box Interface

Purpose: Fence off agents that keep failing
Interface: allow(), record_success(), record_failure(), release_probe(), state()
Hidden: Per-target cells, locking, cooldown timing

Closed -> Open after N consecutive failures; Open -> Half-Open after the
cooldown; Half-Open admits a single probe whose outcome decides the next state.
"""

from .breaker import CircuitBreakerRegistry, CircuitState, StateChangeCallback

__all__ = ["CircuitBreakerRegistry", "CircuitState", "StateChangeCallback"]
