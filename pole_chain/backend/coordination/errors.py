class CoordinationError(Exception):
    """Base for every request the arbiter refuses. Nothing is applied when raised."""
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ModeMismatchError(CoordinationError):
    """The request's context (real/sim) is not accepted in the current operating mode."""
    status_code = 403


class UnknownPoleError(CoordinationError):
    status_code = 400


class InvalidPayloadError(CoordinationError):
    status_code = 400


class InvalidModeError(CoordinationError):
    status_code = 400
