"""Common base for every error the gateway raises on purpose."""


class GatewayError(Exception):
    """Base class for typed gateway failures.

    Subclasses live next to the code that raises them. The endpoint
    converts any GatewayError into a 400 JSON body or an SSE error event.
    """
