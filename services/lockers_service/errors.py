"""Exceptions raised by the lockers service."""

from typing import Optional


class LockerDropError(Exception):
    """Base exception for LockerDrop domain errors."""


class CredentialError(LockerDropError):
    """The provider token exchange failed. The next call tries again."""


class ProviderError(LockerDropError):
    """Locker provider API returned an error response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


class ProviderUnavailable(ProviderError):
    """Network failure, timeout or 5xx from the provider."""


class OfferUnavailable(LockerDropError):
    """No locker can be offered for this request."""

    reason = "unavailable"


class NoLocationsNearby(OfferUnavailable):
    reason = "no_locations_nearby"


class NoCapacity(OfferUnavailable):
    reason = "no_capacity"


class AllocationError(LockerDropError):
    """Allocation refused for this order."""


class NotificationFailure(LockerDropError):
    """A notification channel could not deliver a message."""

    def __init__(self, channel: str, message: str):
        self.channel = channel
        self.message = message
        super().__init__(f"{channel}: {message}")
