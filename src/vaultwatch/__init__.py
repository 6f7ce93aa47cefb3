"""vaultwatch: live token balance view for a single custodial vault."""

__version__ = "0.1.0"
