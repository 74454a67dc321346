# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package circuit provides store-backed circuit breakers for external dependencies.

This package implements:
- The CLOSED / OPEN / HALF_OPEN state machine with lazy transitions
- Stale-failure decay over a monitoring window
- A per-dependency registry with configurable policies
- A decorator and a one-off helper for protecting calls
"""

from .circuit import (
    CircuitPhase,
    CircuitState,
    StateTransition,
    ExecutionDecision,
    CircuitBreakerOptions,
    CircuitBreaker,
    circuit_breaker,
)

from .registry import (
    DEFAULT_DEPENDENCY_POLICIES,
    CircuitBreakerRegistry,
    with_circuit_breaker,
)

__all__ = [
    'CircuitPhase',
    'CircuitState',
    'StateTransition',
    'ExecutionDecision',
    'CircuitBreakerOptions',
    'CircuitBreaker',
    'circuit_breaker',
    'DEFAULT_DEPENDENCY_POLICIES',
    'CircuitBreakerRegistry',
    'with_circuit_breaker',
]
