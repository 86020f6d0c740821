"""DAPNET paging transport adapter.

Posts calls to the DAPNET v2 API (``POST <api_url>/calls``) with HTTP Basic
auth and maps every transport result into one of the four delivery outcomes
the queue's retry policy is keyed on.
"""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.request
from typing import Optional, Sequence

from adapters.notification_formatting import format_dapnet_call
from core.models import DeliveryOutcome, OutboundCall

LOGGER = logging.getLogger(__name__)

USER_AGENT = "EventPager/1.0"
CONFLICT_STATUSES = {409, 423}
RATE_LIMIT_STATUS = 429


def classify_status(status_code: Optional[int]) -> DeliveryOutcome:
    """Map an HTTP status (None for network errors) to a delivery outcome."""

    if status_code is None:
        return DeliveryOutcome.FAILURE
    if 200 <= status_code < 300:
        return DeliveryOutcome.SUCCESS
    if status_code in CONFLICT_STATUSES:
        return DeliveryOutcome.CONFLICT
    if status_code == RATE_LIMIT_STATUS:
        return DeliveryOutcome.RATE_LIMITED
    return DeliveryOutcome.FAILURE


class DapnetTransport:
    """Transport adapter that sends calls through the DAPNET REST API."""

    def __init__(
        self,
        api_url: str,
        username: str,
        password: str,
        transmitter_groups: Sequence[str],
        timeout: float = 5,
    ) -> None:
        if not api_url:
            raise ValueError("DAPNET API URL is required")
        if not username or not password:
            raise ValueError("DAPNET API username and password are required")
        if not transmitter_groups:
            raise ValueError("At least one DAPNET transmitter group is required")
        self._api_url = api_url
        self._username = username
        self._password = password
        self._transmitter_groups = list(transmitter_groups)
        self._timeout = timeout

    def _endpoint(self) -> str:
        return f"{self._api_url.rstrip('/')}/calls"

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self._username}:{self._password}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def deliver(self, call: OutboundCall) -> DeliveryOutcome:
        """Send one call and classify the response."""

        payload = format_dapnet_call(call, self._transmitter_groups)
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        request.add_header("Authorization", self._auth_header())
        request.add_header("User-Agent", USER_AGENT)

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                status = response.status
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            self._log_http_error(e.code, body)
            return classify_status(e.code)
        except OSError as e:
            # URLError, connection resets and socket timeouts all land here.
            LOGGER.error("DAPNET request failed: %s - %s", self._endpoint(), e)
            return DeliveryOutcome.FAILURE

        outcome = classify_status(status)
        if outcome is DeliveryOutcome.SUCCESS:
            LOGGER.info("DAPNET call accepted (status %s) for %s", status, call.recipient_id)
        else:
            self._log_http_error(status, "")
        return outcome

    def _log_http_error(self, status: int, body: str) -> None:
        endpoint = self._endpoint()
        if status == 400:
            LOGGER.error("DAPNET validation error (%s) at %s: %s", status, endpoint, body or "invalid request")
        elif status in (401, 403):
            LOGGER.error("DAPNET authentication error (%s) at %s", status, endpoint)
        elif status in CONFLICT_STATUSES:
            LOGGER.error("DAPNET resource conflict (%s) at %s: call already exists", status, endpoint)
        elif status == RATE_LIMIT_STATUS:
            LOGGER.warning("DAPNET rate limit exceeded (%s) at %s", status, endpoint)
        elif status >= 500:
            LOGGER.error("DAPNET server error (%s) at %s", status, endpoint)
        else:
            LOGGER.error("DAPNET call failed (%s) at %s: %s", status, endpoint, body)
