"""Root of the participant registry's exception hierarchy."""


class RegistryError(Exception):
    """Base class for errors raised by the registry.

    Callers that only need to tell registry failures apart from programming
    errors catch this; the HTTP layer maps each subclass to a status code.
    """
