"""Custom exceptions for the proposal generator."""


class ProposalError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(ProposalError):
    """Raised for bad input: quantities, discounts, missing fields, unknown products."""
    def __init__(self, message, field=None, line=None, payload=None):
        payload = dict(payload or ())
        if field is not None:
            payload['field'] = field
        if line is not None:
            payload['line'] = line
        super().__init__(message, 400, payload)
        self.field = field
        self.line = line


class ProductNotFoundError(ValidationError):
    """Raised when a requested product id does not resolve to an active product."""
    def __init__(self, product_id, line=None):
        super().__init__(f"Product {product_id} not found", field='product_id', line=line,
                         payload={'product_id': product_id})
        self.product_id = product_id


class NotFoundError(ProposalError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ArtifactMissingError(ProposalError):
    """Raised when a quote has no finalized artifact (or the artifact is gone)."""
    def __init__(self, message="Quote has not been finalized yet", payload=None):
        super().__init__(message, 409, payload)


class InvalidTransitionError(ProposalError):
    """Raised when a lifecycle transition is not allowed from the current status."""
    def __init__(self, current, target, payload=None):
        current_label = getattr(current, 'value', current)
        target_label = getattr(target, 'value', target)
        message = f"Cannot move quote from {current_label} to {target_label}"
        super().__init__(message, 409, payload)
        self.current = current
        self.target = target


class ConflictError(ProposalError):
    """Raised on concurrent finalize or quote number collision."""

    def __init__(self, message="Operation already in progress, retry later", payload=None, retryable=True):
        super().__init__(message, 409, payload)
        self.retryable = retryable

    def to_dict(self):
        rv = super().to_dict()
        rv['retryable'] = self.retryable
        return rv


class DependencyError(ProposalError):
    """Raised when an external collaborator (artifact store, template) fails."""
    def __init__(self, message="A dependent service is unavailable", payload=None):
        super().__init__(message, 503, payload)


class DocumentGenerationError(ProposalError):
    """Raised when a document cannot be rendered."""
    def __init__(self, message="Document generation failed", payload=None):
        super().__init__(message, 500, payload)
