"""
Security package for the proxy: request signatures, replay protection and
caller authentication.
"""

from .auth import AuthGuard, StaticTokenVerifier
from .signature import (
    ReplayGuard,
    SignatureAccepted,
    SignatureRejected,
    SignatureVerifier,
    compute_signature,
)

__all__ = [
    "AuthGuard",
    "StaticTokenVerifier",
    "ReplayGuard",
    "SignatureAccepted",
    "SignatureRejected",
    "SignatureVerifier",
    "compute_signature",
]
