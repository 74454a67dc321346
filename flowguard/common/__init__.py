# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Common clock sources and helpers shared by FlowGuard packages.
"""

from .clock import Clock, SystemClock, ManualClock, default_clock, to_millis
from .utils import (
    make_key,
    millis_to_datetime,
    millis_to_iso,
    ceil_seconds,
    format_duration,
    format_wait,
    call_maybe_async,
)

__all__ = [
    'Clock',
    'SystemClock',
    'ManualClock',
    'default_clock',
    'to_millis',
    'make_key',
    'millis_to_datetime',
    'millis_to_iso',
    'ceil_seconds',
    'format_duration',
    'format_wait',
    'call_maybe_async',
]
