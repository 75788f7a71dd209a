"""Exceptions shared by the reconciliation core."""


class ConfigurationError(RuntimeError):
    """Required setting missing or invalid. Raised before any remote call."""
    pass


class ReconcilerStateError(RuntimeError):
    """Reconciler driven through an invalid state transition."""
    pass
