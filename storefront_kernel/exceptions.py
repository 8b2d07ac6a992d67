"""
Typed exception hierarchy for the storefront backend.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The import engine has to decide, for every failure, whether it is a
record problem (count it and move on), a transient batch problem (retry
with backoff), a fatal job problem (mark the job failed), or a control
problem (reject the request, change nothing).  That decision is made by
exception TYPE, never by parsing messages:

    try:
        page = source.fetch_page(filters, page=3, page_size=50)
    except ExternalSourceUnavailableError:
        ...  # retry with backoff
    except ExternalSourceAuthError as e:
        ...  # fatal -- job.last_error = str(e)

Every class carries a machine-readable ``code`` class attribute and
stores its context as attributes so it survives logging and API
serialization.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StorefrontError (base)
    |
    +-- ImportJobError
    |   +-- ImportJobNotFoundError
    |   +-- ImportJobConflictError
    |   +-- InvalidJobStateError
    |   +-- BatchInFlightError
    |   +-- BatchRetryExhaustedError
    |
    +-- ExternalSourceError
    |   +-- ExternalSourceUnavailableError   (retryable)
    |   +-- ExternalSourceAuthError
    |   +-- ExternalSourceResponseError
    |   +-- StoreNotConfiguredError
    |
    +-- OrderError
        +-- OrderMappingError
        +-- OrderNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Import job      | IMPORT_JOB_NOT_FOUND        | Job id doesn't exist
                | IMPORT_JOB_CONFLICT         | Tenant already has a non-terminal job
                | INVALID_JOB_STATE           | Control signal not allowed in status
                | BATCH_IN_FLIGHT             | A batch is already running for the job
                | BATCH_RETRY_EXHAUSTED       | Page fetch kept failing after retries
----------------|-----------------------------|-----------------------------------------
External source | EXTERNAL_SOURCE_UNAVAILABLE | Timeout, 429, 5xx, transport error
                | EXTERNAL_SOURCE_AUTH        | 401/403 from the store API
                | EXTERNAL_SOURCE_RESPONSE    | Response body is not what we expect
                | STORE_NOT_CONFIGURED        | No credentials for the tenant
----------------|-----------------------------|-----------------------------------------
Order           | INVALID_ORDER_PAYLOAD       | External order can't be mapped
                | ORDER_NOT_FOUND             | Local order id doesn't exist
"""


class StorefrontError(Exception):
    """
    Base exception for all storefront errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "STOREFRONT_ERROR"


# Import job exceptions


class ImportJobError(StorefrontError):
    """Base exception for import job lifecycle errors."""

    code: str = "IMPORT_JOB_ERROR"


class ImportJobNotFoundError(ImportJobError):
    """Import job with given ID was not found."""

    code: str = "IMPORT_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Import job not found: {job_id}")


class ImportJobConflictError(ImportJobError):
    """Tenant already owns a non-terminal import job.

    A second start request is rejected, not queued.
    """

    code: str = "IMPORT_JOB_CONFLICT"

    def __init__(self, tenant_id: str, active_job_id: str | None = None):
        self.tenant_id = tenant_id
        self.active_job_id = active_job_id
        detail = f" (active job {active_job_id})" if active_job_id else ""
        super().__init__(
            f"Tenant {tenant_id} already has an import job in progress{detail}"
        )


class InvalidJobStateError(ImportJobError):
    """Control signal is not permitted from the job's current status."""

    code: str = "INVALID_JOB_STATE"

    def __init__(self, job_id: str, current_status: str, action: str):
        self.job_id = job_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} import job {job_id} in status '{current_status}'"
        )


class BatchInFlightError(ImportJobError):
    """A batch for this job is already executing."""

    code: str = "BATCH_IN_FLIGHT"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"A batch is already in flight for import job {job_id}")


class BatchRetryExhaustedError(ImportJobError):
    """A batch-level operation kept failing after all retry attempts."""

    code: str = "BATCH_RETRY_EXHAUSTED"

    def __init__(self, operation: str, attempts: int, last_error: str):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )


# External source exceptions


class ExternalSourceError(StorefrontError):
    """Base exception for errors talking to the external store API."""

    code: str = "EXTERNAL_SOURCE_ERROR"
    retryable: bool = False


class ExternalSourceUnavailableError(ExternalSourceError):
    """Transient failure: timeout, rate limit, server error, broken transport."""

    code: str = "EXTERNAL_SOURCE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, reason: str, status_code: int | None = None):
        self.operation = operation
        self.reason = reason
        self.status_code = status_code
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"External source unavailable during {operation}{status}: {reason}")


class ExternalSourceAuthError(ExternalSourceError):
    """The store API rejected our credentials. Never retried."""

    code: str = "EXTERNAL_SOURCE_AUTH"

    def __init__(self, operation: str, status_code: int):
        self.operation = operation
        self.status_code = status_code
        super().__init__(
            f"External source rejected credentials during {operation} (HTTP {status_code})"
        )


class ExternalSourceResponseError(ExternalSourceError):
    """The store API answered with a body we cannot interpret."""

    code: str = "EXTERNAL_SOURCE_RESPONSE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Unexpected response during {operation}: {reason}")


class StoreNotConfiguredError(ExternalSourceError):
    """No external store credentials are configured for the tenant."""

    code: str = "STORE_NOT_CONFIGURED"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"No external store configured for tenant {tenant_id}")


# Order exceptions


class OrderError(StorefrontError):
    """Base exception for local order errors."""

    code: str = "ORDER_ERROR"


class OrderMappingError(OrderError):
    """An external order payload cannot be mapped to a local order.

    Record-level: the import job counts it as failed and continues.
    """

    code: str = "INVALID_ORDER_PAYLOAD"

    def __init__(self, reason: str, field: str | None = None, external_id: str | None = None):
        self.reason = reason
        self.field = field
        self.external_id = external_id
        where = f" [{field}]" if field else ""
        super().__init__(f"Invalid order payload{where}: {reason}")


class OrderNotFoundError(OrderError):
    """Local order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")
