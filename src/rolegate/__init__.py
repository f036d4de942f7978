"""RoleGate: wallet-signature verification engine for token-gated community roles."""

__version__ = "0.1.0"
