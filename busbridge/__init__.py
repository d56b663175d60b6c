"""busbridge: stream-to-EventBridge bridge with hand-built SigV4 signing.

- Signature Version 4 signing engine (canonical request, string to sign,
  derived key chain, Authorization header)
- Credential lifecycle manager: cache-aside temporary credentials per
  destination partition, single-flight refresh over a mutual-TLS exchange
- Dispatch orchestrator: discriminator validation, dual-destination
  routing, required/optional partial-failure policy, acknowledgment
- Env-driven configuration with a production guard
"""

__version__ = "0.1.0"
__description__ = "Stream to EventBridge bridge with SigV4 signing and credential caching"

from busbridge.core.orchestrator import DispatchOrchestrator, PartialDispatchFailure
from busbridge.core.credential_manager import CredentialManager
from busbridge.config import BridgeSettings

__all__ = [
    "BridgeSettings",
    "CredentialManager",
    "DispatchOrchestrator",
    "PartialDispatchFailure",
    "__version__",
]
