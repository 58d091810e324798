"""
Karat Pricing - Custom Exceptions
==================================
Business-level exceptions that can be caught and converted to HTTP responses.

Families:
    ValidationError  - bad input, rejected synchronously, never retried
    ResolutionError  - no usable configuration for a node
    ConflictError    - concurrent state changes (some are retryable)
    JobStateError    - illegal recalculation job transitions
"""


class KaratError(Exception):
    """Base exception for all business logic errors."""
    status_code = 400
    retryable = False

    def __init__(self, message: str = "An internal pricing error occurred."):
        self.message = message
        super().__init__(self.message)


# ==========================================
# Validation
# ==========================================

class ValidationError(KaratError):
    """Raised when caller input is invalid."""
    pass


class InvalidContextError(ValidationError):
    """Raised when net weight or metal rate is negative or not finite."""
    pass


class EmptyConfigurationError(ValidationError):
    """Raised when a configuration has no active components to evaluate."""
    def __init__(self, message: str = "Pricing configuration has no active components."):
        super().__init__(message)


class InvalidConfigurationError(ValidationError):
    """Raised when a configuration or component definition is malformed."""
    pass


class FreezeReasonRequiredError(ValidationError):
    """Raised when a freeze is requested without a justification."""
    def __init__(self):
        super().__init__("A reason is required to freeze a pricing component.")


class AlreadyUnfrozenError(ValidationError):
    """Raised when unfreezing a component that is not frozen."""
    def __init__(self, component_key: str):
        super().__init__(f"Component is not frozen: {component_key}")


# ==========================================
# Lookup
# ==========================================

class NotFoundError(KaratError):
    """Raised when a requested resource doesn't exist."""
    status_code = 404


class ComponentNotFoundError(NotFoundError):
    """Raised when a component key is not part of the configuration or catalog."""
    def __init__(self, component_key: str):
        super().__init__(f"Component not found: {component_key}")


class DuplicateError(KaratError):
    """Raised for unique constraint violations at the business level."""
    status_code = 409


# ==========================================
# Resolution
# ==========================================

class ResolutionError(KaratError):
    """Raised when a node's effective configuration cannot be determined."""
    status_code = 422


class NoPricingConfigurationError(ResolutionError):
    """Raised when neither a node nor any ancestor owns a configuration."""
    def __init__(self, node_id: int):
        super().__init__(f"No pricing configuration found for subcategory {node_id} or its ancestors.")


class CorruptHierarchyError(ResolutionError):
    """Raised when the subcategory tree contains a cycle or a dangling reference."""
    pass


# ==========================================
# Concurrency
# ==========================================

class ConflictError(KaratError):
    """Raised when the requested change races with another one."""
    status_code = 409


class ConfigurationChangedError(ConflictError):
    """Raised when a configuration's version moved while a calculation was using it."""
    retryable = True

    def __init__(self, config_id: int, expected: int, actual: int):
        self.config_id = config_id
        super().__init__(
            f"Pricing configuration {config_id} changed during recalculation "
            f"(version {expected} -> {actual})."
        )


class JobAlreadyInProgressError(ConflictError):
    """Raised when a recalculation for the same scope is already pending or running."""
    def __init__(self, scope_key: str, job_id: int):
        self.job_id = job_id
        super().__init__(f"Recalculation job {job_id} is already in progress for {scope_key}.")


# ==========================================
# Jobs
# ==========================================

class JobStateError(KaratError):
    """Raised when a job cannot make the requested transition."""
    status_code = 409


class RetryLimitExceededError(JobStateError):
    """Raised when a job has used all of its attempts."""
    def __init__(self, job_id: int, max_attempts: int):
        super().__init__(f"Job {job_id} has exceeded maximum retry attempts ({max_attempts}).")
