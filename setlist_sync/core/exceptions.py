"""
Exception classes for setlist-sync.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message plus an optional details
dictionary, so callers can show the message and log the details.

Exception Hierarchy:
    SetlistSyncError (base)
        ConfigurationError - Missing endpoint or invalid configuration file
        TransportError - Non-success HTTP status or unparseable body
            PayloadShapeError - JSON that matches no known response shape
        NotFoundLocally - Operation references an id not in local state

Confirmation exhaustion is not an exception. When the remote
accepts a write but it never becomes visible, the operation still succeeds
with a best-effort entity (see remote.confirmation.ConfirmationState).
"""


class SetlistSyncError(Exception):
    """
    Base exception for all setlist-sync errors.
    
    All custom exceptions in this project inherit from this class,
    allowing callers to catch every setlist-sync error with a single
    except clause.
    
    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., url, ids).
    
    Example:
        try:
            await store.add_song("Wonderwall", artist="Oasis")
        except SetlistSyncError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """
    
    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.
        
        Args:
            message: Human-readable error description shown to the user.
            details: Optional dictionary containing additional context.
                     Common keys include:
                     - 'url': Endpoint involved in the error
                     - 'setlist_id' / 'song_id': Entity involved
                     - 'original_error': The underlying exception text
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigurationError(SetlistSyncError):
    """
    Raised when configuration is missing or invalid.
    
    Never retried. Raised immediately, before any network activity.
    
    Common causes:
        - The endpoint URL for an operation category is unset
        - config.yaml has invalid YAML syntax or invalid values
        - An explicit --config path does not exist
    
    Example:
        raise ConfigurationError(
            "Endpoint 'save_song' is not configured",
            details={'endpoint': 'save_song', 'env_var': 'SETLIST_SAVE_SONG_URL'}
        )
    """
    pass


class TransportError(SetlistSyncError):
    """
    Raised when a single remote round trip fails.
    
    The gateway never retries; this error is surfaced to the caller of
    that one call.
    
    Common causes:
        - Non-2xx HTTP status
        - Body declared as JSON but not parseable
        - Connection failure or timeout
    
    Attributes:
        status: HTTP status code, or None when no response was received.
        body: Raw response text, or "" when unavailable.
    """
    
    def __init__(
        self,
        message: str,
        details: dict | None = None,
        status: int | None = None,
        body: str = ""
    ) -> None:
        """
        Initialize transport error with response information.
        
        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional context.
            status: HTTP status code if a response was received.
            body: Response body text if one was received.
        """
        super().__init__(message, details)
        self.status = status
        self.body = body


class PayloadShapeError(TransportError):
    """Raised when a response body matches none of the known JSON shapes."""
    pass


class NotFoundLocally(SetlistSyncError):
    """
    Raised when an operation references a song or setlist id that is not
    present in local state. The operation is aborted before any network call.
    
    Attributes:
        kind: "song", "setlist" or "item".
        entity_id: The id that could not be resolved.
    """
    
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(
            f"{kind.capitalize()} '{entity_id}' was not found",
            details={"kind": kind, "id": entity_id}
        )
        self.kind = kind
        self.entity_id = entity_id
