"""
Custom exception classes for the block explorer
"""

class ExplorerError(Exception):
    """Base exception for explorer operations"""
    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code or "EXPLORER_ERROR"

class ApiError(ExplorerError):
    """A call against the node API did not produce a usable payload"""

class TransportError(ApiError):
    """Network, timeout or undecodable response body"""
    def __init__(self, message: str, status: int = None):
        super().__init__(message, "TRANSPORT_ERROR")
        self.status = status

class DomainError(ApiError):
    """The node answered with a non-ok error field"""
    def __init__(self, message: str, path: str = None):
        super().__init__(message, "DOMAIN_ERROR")
        self.path = path

    @property
    def not_found(self) -> bool:
        return "not_found" in self.message

class ParseError(ApiError):
    """Payload is valid JSON but not the shape we expect"""
    def __init__(self, message: str):
        super().__init__(message, "PARSE_ERROR")

class StateConflict(ExplorerError):
    """Response arrived for a query that is no longer displayed"""
    def __init__(self, message: str = "Stale response discarded"):
        super().__init__(message, "STATE_CONFLICT")

class ValidationError(ExplorerError):
    """Request input failed validation"""
    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR")
