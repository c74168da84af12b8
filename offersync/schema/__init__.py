"""Schema package exports."""

from .billing import LedgerEntry, LedgerStatus, Wallet
from .content import AiTemplate, GenerationPreference
from .integrations import MarketplaceIntegration

__all__ = ["AiTemplate", "GenerationPreference", "LedgerEntry", "LedgerStatus", "MarketplaceIntegration", "Wallet"]
