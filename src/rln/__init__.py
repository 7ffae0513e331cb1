"""RLN — rate-limiting nullifier anti-spam engine."""

from rln.config import RLNConfig
from rln.service import PreparedMessage, RLNService, ServiceResult

__version__ = "0.1.0"

__all__ = ["PreparedMessage", "RLNConfig", "RLNService", "ServiceResult"]
