"""
Domain errors raised by the services layer.

Each error carries the HTTP status the API answers with; main.py turns them
into JSON responses in one place so the services never import FastAPI.
"""


class NeedsConnectError(Exception):
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(NeedsConnectError):
    status_code = 404

    def __init__(self, kind: str, ident):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident} not found")


class Forbidden(NeedsConnectError):
    status_code = 403


class InvalidQuantity(NeedsConnectError):
    status_code = 400

    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class EmptyBasket(NeedsConnectError):
    status_code = 400

    def __init__(self):
        super().__init__("Basket is empty. Add items to your basket before checking out.")


class CapacityExceeded(NeedsConnectError):
    """Basket-time check: the requested quantity is more than is still needed."""

    status_code = 409

    def __init__(self, need_id: int, requested: int, available: int):
        self.need_id = need_id
        self.requested = requested
        self.available = available
        if available <= 0:
            message = f"Need {need_id} has been fully funded and is no longer available"
        else:
            message = (
                f"Not enough quantity available for need {need_id}. "
                f"Available: {available}, Requested: {requested}"
            )
        super().__init__(message)


class CapacityExceededAtCommit(NeedsConnectError):
    """
    Commit-time conflict for a single basket line.

    Checkout never lets this escape: it becomes a dropped or reduced entry in
    the checkout result.
    """

    status_code = 409

    def __init__(self, need_id: int, requested: int, committed: int):
        self.need_id = need_id
        self.requested = requested
        self.committed = committed
        super().__init__(
            f"Could only fund {committed} of {requested} for need {need_id}"
        )


class AlreadySignedUp(NeedsConnectError):
    status_code = 409

    def __init__(self, event_id: int, helper_id: int):
        self.event_id = event_id
        self.helper_id = helper_id
        super().__init__(f"User {helper_id} is already signed up for event {event_id}")


class EventFull(NeedsConnectError):
    # Not raised while every event keeps a waitlist.
    status_code = 409

    def __init__(self, event_id: int):
        self.event_id = event_id
        super().__init__(f"Event {event_id} is full")


class InvalidEvent(NeedsConnectError):
    status_code = 400


class SlotsBelowConfirmed(NeedsConnectError):
    status_code = 409

    def __init__(self, event_id: int, slots: int, confirmed: int):
        self.event_id = event_id
        self.slots = slots
        self.confirmed = confirmed
        super().__init__(
            f"Event {event_id} already has {confirmed} confirmed volunteers; "
            f"cannot reduce slots to {slots}"
        )


class InvalidNeed(NeedsConnectError):
    status_code = 400
