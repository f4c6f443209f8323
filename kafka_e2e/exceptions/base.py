"""
Base domain exceptions for the managed Kafka e2e suite.

Every failure raised by the suite carries a stable ``code`` and a ``details``
dict so a test report can show the operation, the last observed state and the
underlying cause without parsing message text.
"""

import re
from typing import Any, Dict, List, Optional, Sequence


class DomainException(Exception):
    """Root of all suite exceptions"""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ConfigurationError(DomainException):
    """Invalid or incomplete connection/configuration parameters"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Configuration error: {message}",
            code="CONFIGURATION_ERROR",
            details=details or {}
        )


class ClassifiedError(DomainException):
    """
    An error that carries a structured HTTP status and domain error code.

    Retry classifiers only ever look at ``status_code`` and ``error_code``.
    """

    def __init__(self, message: str, code: str,
                 status_code: Optional[int] = None,
                 error_code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code=code, details=details)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def is_server_error(self) -> bool:
        return self.status_code is not None and 500 <= self.status_code < 600

    @property
    def is_request_timeout(self) -> bool:
        return self.status_code == 408


# ---------------------------------------------------------------------------
# Control plane (REST) errors
# ---------------------------------------------------------------------------

class ApiGenericException(ClassifiedError):
    """Failed control-plane API call"""

    def __init__(self, message: str, status_code: int,
                 operation: Optional[str] = None,
                 error_code: Optional[str] = None,
                 reason: Optional[str] = None,
                 response_body: Any = None):
        super().__init__(
            message=message,
            code="API_ERROR",
            status_code=status_code,
            error_code=error_code,
            details={
                "operation": operation,
                "status_code": status_code,
                "error_code": error_code,
                "reason": reason,
            }
        )
        self.operation = operation
        self.reason = reason
        self.response_body = response_body

    @staticmethod
    def from_response(status_code: int, body: Any,
                      operation: Optional[str] = None) -> "ApiGenericException":
        """Build the status-specific exception for an error response body"""
        error_code = None
        reason = None
        if isinstance(body, dict):
            error_code = body.get("code") or None
            reason = body.get("reason") or body.get("message") or body.get("detail")

        message = f"{operation or 'request'} failed with status {status_code}"
        if error_code:
            message += f" [{error_code}]"
        if reason:
            message += f": {reason}"

        cls = _API_EXCEPTIONS_BY_STATUS.get(status_code, ApiUnknownException)
        return cls(
            message,
            status_code=status_code,
            operation=operation,
            error_code=error_code,
            reason=reason,
            response_body=body,
        )


class ApiUnauthorizedException(ApiGenericException):
    pass


class ApiForbiddenException(ApiGenericException):
    pass


class ApiNotFoundException(ApiGenericException):
    pass


class ApiConflictException(ApiGenericException):
    pass


class ApiTooManyRequestsException(ApiGenericException):
    pass


class ApiUnknownException(ApiGenericException):
    pass


_API_EXCEPTIONS_BY_STATUS = {
    401: ApiUnauthorizedException,
    403: ApiForbiddenException,
    404: ApiNotFoundException,
    409: ApiConflictException,
    429: ApiTooManyRequestsException,
}


# ---------------------------------------------------------------------------
# CLI errors
# ---------------------------------------------------------------------------

# Verbose CLI output prints the HTTP exchange, e.g. "HTTP/1.1 503 Service Unavailable"
_HTTP_STATUS_PATTERN = re.compile(r"HTTP(?:/\d(?:\.\d)?)?\s+(\d{3})\b")
_DOMAIN_CODE_PATTERN = re.compile(r"\b([A-Z]+-MGMT-\d+)\b")


def extract_http_status(output: str) -> Optional[int]:
    """Return the last HTTP status printed in ``output``, if any"""
    matches = _HTTP_STATUS_PATTERN.findall(output or "")
    if not matches:
        return None
    return int(matches[-1])


def extract_domain_code(output: str) -> Optional[str]:
    match = _DOMAIN_CODE_PATTERN.search(output or "")
    return match.group(1) if match else None


class CliGenericException(ClassifiedError):
    """Non-zero exit of the CLI binary"""

    def __init__(self, command: Sequence[str], exit_code: int,
                 stdout: str = "", stderr: str = ""):
        status_code = extract_http_status(stderr) or extract_http_status(stdout)
        error_code = extract_domain_code(stderr) or extract_domain_code(stdout)
        message = f"command {' '.join(command)!r} exited with code {exit_code}"
        if status_code:
            message += f" (HTTP {status_code})"
        tail = (stderr or "").strip().splitlines()[-5:]
        if tail:
            message += ":\n" + "\n".join(tail)

        super().__init__(
            message=message,
            code="CLI_ERROR",
            status_code=status_code,
            error_code=error_code,
            details={
                "command": list(command),
                "exit_code": exit_code,
                "status_code": status_code,
                "error_code": error_code,
            }
        )
        self.command = list(command)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr

    @staticmethod
    def from_result(command: Sequence[str], exit_code: int,
                    stdout: str, stderr: str) -> "CliGenericException":
        exc = CliGenericException(command, exit_code, stdout, stderr)
        if exc.status_code == 404:
            return CliNotFoundException(command, exit_code, stdout, stderr)
        return exc


class CliNotFoundException(CliGenericException):
    pass


# ---------------------------------------------------------------------------
# Oracle errors
# ---------------------------------------------------------------------------

class WaitTimeoutError(DomainException):
    """A polled condition did not become ready before its deadline"""

    def __init__(self, label: str, last_value: Any, elapsed: float, timeout: float):
        super().__init__(
            message=(
                f"timeout after {elapsed:.1f}s (limit {timeout:.1f}s) waiting for {label}; "
                f"last value: {last_value!r}"
            ),
            code="WAIT_TIMEOUT",
            details={"label": label, "elapsed": elapsed, "timeout": timeout}
        )
        self.label = label
        self.last_value = last_value
        self.elapsed = elapsed
        self.timeout = timeout


class DeliveryTimeoutError(DomainException):
    """Produce+consume did not complete before the delivery timer fired"""

    def __init__(self, expected_count: int, topic: str, elapsed: float):
        super().__init__(
            message=(
                f"timeout after {elapsed:.1f}s waiting for {expected_count} messages "
                f"on topic: {topic}"
            ),
            code="DELIVERY_TIMEOUT",
            details={"expected_count": expected_count, "topic": topic, "elapsed": elapsed}
        )
        self.expected_count = expected_count
        self.topic = topic
        self.elapsed = elapsed


class DeliveryVerificationError(DomainException, AssertionError):
    """Delivered messages do not match the sent messages exactly"""

    def __init__(self, missing: List[Any], extra: List[Any]):
        super().__init__(
            message=(
                "failed to send all messages or/and received some extra messages; "
                f"not-received-messages: {missing}, extra-received-messages: {extra}"
            ),
            code="DELIVERY_MISMATCH",
            details={"missing_count": len(missing), "extra_count": len(extra)}
        )
        self.missing = missing
        self.extra = extra


class UnusedConsumersError(DomainException, AssertionError):
    """Some consumers of a pool did not receive a single record"""

    def __init__(self, unused_consumers: List[str]):
        super().__init__(
            message=(
                "not all consumers has received at least one message; "
                f"unused-consumers: {unused_consumers}"
            ),
            code="UNUSED_CONSUMERS",
            details={"unused_consumers": list(unused_consumers)}
        )
        self.unused_consumers = list(unused_consumers)


# ---------------------------------------------------------------------------
# Data plane (Kafka transport) errors
# ---------------------------------------------------------------------------

class KafkaTransportError(DomainException):
    """Error reported by the Kafka client for a produce/consume operation"""

    def __init__(self, message: str, kafka_error: Any = None,
                 operation: Optional[str] = None, code: str = "KAFKA_ERROR"):
        super().__init__(
            message=f"{operation}: {message}" if operation else message,
            code=code,
            details={"operation": operation, "kafka_error": str(kafka_error) if kafka_error else None}
        )
        self.kafka_error = kafka_error
        self.operation = operation


class KafkaAuthorizationError(KafkaTransportError):
    """Produce/consume/group access denied by the broker ACLs"""

    def __init__(self, message: str, kafka_error: Any = None, operation: Optional[str] = None):
        super().__init__(message, kafka_error=kafka_error, operation=operation,
                         code="KAFKA_AUTHORIZATION_ERROR")
