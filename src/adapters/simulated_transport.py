"""Simulated paging transport.

Logs each call instead of contacting the paging network and always reports
success. Used for dry runs and local testing.
"""

from __future__ import annotations

import logging
from typing import List

from adapters.notification_formatting import render_call
from core.models import DeliveryOutcome, OutboundCall

LOGGER = logging.getLogger(__name__)


class SimulatedTransport:
    """Transport adapter that records calls instead of sending them."""

    def __init__(self) -> None:
        self.sent: List[OutboundCall] = []

    def deliver(self, call: OutboundCall) -> DeliveryOutcome:
        self.sent.append(call)
        LOGGER.info("Pager call (simulated): %s", render_call(call))
        return DeliveryOutcome.SUCCESS
