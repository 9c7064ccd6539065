"""
Delegated authorization: account keys, signed artifacts and their verification.
"""

from .artifacts import (
    Authorization,
    PermitAuthorization,
    SubscriptionAuthorization,
    authorization_from_dict,
    authorization_to_dict,
)
from .signing import AccountKey, TypedDataDomain, recover_signer
from .verifier import AuthorizationVerifier, NonceRegistry

__all__ = [
    "AccountKey",
    "TypedDataDomain",
    "recover_signer",
    "Authorization",
    "PermitAuthorization",
    "SubscriptionAuthorization",
    "authorization_from_dict",
    "authorization_to_dict",
    "AuthorizationVerifier",
    "NonceRegistry",
]
