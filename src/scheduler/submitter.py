"""
Form submitters.

The submitter performs the side effect a job exists for. It may take tens of
seconds, may fail, and drives a single external session, so it must never be
entered twice concurrently (ExecutionQueue guarantees this).

What a submitter MUST NOT do:
- Touch job state (ExecutionQueue records outcomes)
- Retry on its own across jobs
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx


logger = logging.getLogger(__name__)

DEFAULT_SUBMIT_TIMEOUT = 60.0

# payload key -> form field name; overridable via FORM_FIELD_MAP
DEFAULT_FIELD_MAP = {
    "terminal_id": "terminal_id",
    "camera_condition": "camera_condition",
    "nvr_condition": "nvr_condition",
    "submitter_name": "submitter_name",
    "company": "company",
    "employee_number": "employee_number",
}


@dataclass(frozen=True)
class SubmitResult:
    success: bool
    message: str = ""


class FormSubmitter(ABC):
    """Abstract base class for the external submission action."""

    @abstractmethod
    def submit(self, payload: dict) -> SubmitResult:
        """
        Submit one payload.

        Args:
            payload: Form data of the job

        Returns:
            SubmitResult; implementations may also raise, which the queue
            records as a failure
        """
        ...

    def close(self) -> None:
        """Release external resources held between submissions."""


class HttpFormSubmitter(FormSubmitter):
    """
    Posts the payload as url-encoded form fields to a form response endpoint.

    Payload keys are renamed through `field_map`; unmapped keys are dropped.
    """

    def __init__(
        self,
        url: str,
        field_map: Optional[dict[str, str]] = None,
        timeout: float = DEFAULT_SUBMIT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize HTTP submitter.

        Args:
            url: Form response URL
            field_map: payload key -> form field name
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.url = url
        self.field_map = dict(field_map or DEFAULT_FIELD_MAP)
        self.timeout = timeout
        self._transport = transport

    def build_form_data(self, payload: dict) -> dict[str, str]:
        return {
            form_field: str(payload[key])
            for key, form_field in self.field_map.items()
            if payload.get(key) is not None
        }

    def submit(self, payload: dict) -> SubmitResult:
        data = self.build_form_data(payload)

        logger.info(f"Submitting form for terminal {payload.get('terminal_id')} to {self.url}")

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    self.url,
                    data=data,
                    headers={"User-Agent": "FormScheduler/1.0"},
                )
        except httpx.TimeoutException:
            return SubmitResult(False, f"Timeout after {self.timeout}s")
        except httpx.RequestError as e:
            return SubmitResult(False, f"Request error: {e}")

        if 200 <= response.status_code < 300:
            return SubmitResult(True, f"Submitted (HTTP {response.status_code})")

        return SubmitResult(False, f"HTTP {response.status_code}: {response.text[:200]}")


class DisabledSubmitter(FormSubmitter):
    """Used when no submit URL is configured; every job fails with a clear message."""

    def submit(self, payload: dict) -> SubmitResult:
        return SubmitResult(False, "Form submitter not configured (set FORM_SUBMIT_URL)")
