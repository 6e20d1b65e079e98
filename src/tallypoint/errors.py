from __future__ import annotations


class TallyError(Exception):
    """Base class for registry, aggregation and rendering errors."""


class ValidationError(TallyError):
    pass


class NotFound(TallyError):
    def __init__(self, filter_id: str):
        super().__init__(f"Filter {filter_id} not found")
        self.filter_id = filter_id


class BadCredentialSyntax(TallyError):
    pass


class Unauthorized(TallyError):
    pass


class NoData(TallyError):
    pass


class DeliveryFailure(TallyError):
    """A flushed batch could not be handed to the registry."""


class RegistryError(TallyError):
    """The registry answered with an error envelope or could not be reached."""
