"""Errors raised by the event store and the review surface."""


class EventStoreError(Exception):
    """The backing database rejected or failed an operation."""

    def __init__(self, action: str, cause: Exception):
        super().__init__(f"{action} failed: {cause}")
        self.action = action
        self.cause = cause


class SecurityEventNotFound(LookupError):
    def __init__(self, event_id: int):
        super().__init__(f"Security event {event_id} not found")
        self.event_id = event_id


class EventAlreadyResolved(Exception):
    def __init__(self, event_id: int):
        super().__init__(f"Security event {event_id} is already resolved")
        self.event_id = event_id


class UnknownAddress(LookupError):
    """No login attempt has ever been recorded for the address."""

    def __init__(self, ip_address: str):
        super().__init__(f"No login attempts recorded for {ip_address}")
        self.ip_address = ip_address
