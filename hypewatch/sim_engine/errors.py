class CascadeSimulationError(ValueError):
    """Raised when simulator inputs violate a precondition or produce non-finite values."""
