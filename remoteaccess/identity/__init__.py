from remoteaccess.identity.secrets import SecretGenerator
from remoteaccess.identity.store import Identity, IdentityStore

__all__ = ["Identity", "IdentityStore", "SecretGenerator"]
