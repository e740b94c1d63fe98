"""
Exceptions raised by store and channel adapters.

Services never let these escape: they are converted into Result failures
(StorageError / PublishError). RedeliveryRequested goes the other way, from a
channel adapter shim to the channel, so the message is not acknowledged.
"""


class AdapterError(Exception):
    """Base class for infrastructure adapter errors."""


class StoreUnavailableError(AdapterError):
    """A cart or order store read/write/delete did not complete."""


class DuplicateCheckoutError(AdapterError):
    """An order with the same checkout id is already stored."""

    def __init__(self, checkout_id: str):
        super().__init__(f"Order already recorded for checkout {checkout_id}")
        self.checkout_id = checkout_id


class ChannelUnavailableError(AdapterError):
    """A publish to the event or acknowledgment channel did not complete."""


class RedeliveryRequested(Exception):
    """Raised by a channel target to leave the message unacknowledged."""
