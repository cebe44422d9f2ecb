"""Errors of the fulfillment pipeline. Each carries the HTTP status it maps to."""


class OrderPipelineError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidTransition(OrderPipelineError):
    """Requested status is not a direct successor of the current one."""
    status_code = 400


class Unauthorized(OrderPipelineError):
    """Actor may not mutate this order."""
    status_code = 403


class NotFound(OrderPipelineError):
    status_code = 404


class ConcurrentModification(OrderPipelineError):
    """Another writer advanced the order between read and write."""
    status_code = 409


class EstimationInputError(OrderPipelineError):
    """Malformed cart or metrics handed to the estimator."""
    status_code = 422


class MetricsUnavailable(OrderPipelineError):
    """Order store could not be read while building estimation snapshots."""
    status_code = 503
