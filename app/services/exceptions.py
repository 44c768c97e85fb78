"""Typed errors raised by the ride services and rendered by the API layer."""


class RideHailingError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(RideHailingError):
    """Ride, rider or user absent."""
    status_code = 404
    code = "not_found"


class InvalidStateError(RideHailingError):
    """Transition attempted from the wrong status, or a competing writer won."""
    status_code = 409
    code = "invalid_state"


class ActiveRideExistsError(InvalidStateError):
    code = "active_ride_exists"


class RiderUnavailableError(RideHailingError):
    """Rider is not approved, online and available."""
    status_code = 409
    code = "rider_unavailable"


class UnauthorizedError(RideHailingError):
    """Actor is not a participant of the ride."""
    status_code = 403
    code = "unauthorized"


class NoCandidatesError(RideHailingError):
    status_code = 404
    code = "no_candidates"

    def __init__(self, message: str, radius_km: float):
        super().__init__(message)
        self.radius_km = radius_km
