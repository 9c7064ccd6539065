"""
Signed authorization artifacts.

Two shapes are accepted when creating a plan:

* ``PermitAuthorization``: a one-time allowance over ``value`` of ``token``
  granted to ``spender`` (the ledger), signed under the token's own domain and
  consumed by the token's allowance bookkeeping.
* ``SubscriptionAuthorization``: consent to create one specific plan, signed
  under the ledger's domain and guarded by the owner's authorization nonce.
"""

from dataclasses import asdict, dataclass
from typing import Any, Union

from .signing import AccountKey, FieldSpec, TypedDataDomain, typed_data_digest

PERMIT_TYPE = "Permit"
PERMIT_FIELDS: tuple[FieldSpec, ...] = (
    ("owner", "address"),
    ("spender", "address"),
    ("value", "uint256"),
    ("nonce", "uint256"),
    ("deadline", "uint256"),
)

SUBSCRIPTION_TYPE = "Subscription"
SUBSCRIPTION_FIELDS: tuple[FieldSpec, ...] = (
    ("owner", "address"),
    ("token", "address"),
    ("amount", "uint256"),
    ("interval", "uint256"),
    ("nonce", "uint256"),
    ("deadline", "uint256"),
)

_ARTIFACT_QUANTITIES = ("value", "nonce", "deadline", "amount", "interval")


@dataclass(frozen=True)
class PermitAuthorization:
    """Owner-signed one-time allowance for the ledger over a token amount."""
    owner: str
    spender: str
    token: str
    value: int
    nonce: int
    deadline: int
    public_key: str
    signature: str

    kind = "permit"

    def message(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "spender": self.spender,
            "value": self.value,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }

    def digest(self, domain: TypedDataDomain) -> bytes:
        return typed_data_digest(domain, PERMIT_TYPE, PERMIT_FIELDS, self.message())

    @classmethod
    def create(cls, key: AccountKey, token_domain: TypedDataDomain, spender: str,
               value: int, nonce: int, deadline: int) -> "PermitAuthorization":
        unsigned = cls(owner=key.address, spender=spender,
                       token=token_domain.verifying_contract, value=value,
                       nonce=nonce, deadline=deadline,
                       public_key=key.public_key_hex, signature="")
        return cls(**{**asdict(unsigned), "signature": key.sign(unsigned.digest(token_domain))})


@dataclass(frozen=True)
class SubscriptionAuthorization:
    """Owner-signed consent to create one specific plan."""
    owner: str
    token: str
    amount: int
    interval: int
    nonce: int
    deadline: int
    public_key: str
    signature: str

    kind = "subscription"

    def message(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "token": self.token,
            "amount": self.amount,
            "interval": self.interval,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }

    def digest(self, domain: TypedDataDomain) -> bytes:
        return typed_data_digest(domain, SUBSCRIPTION_TYPE, SUBSCRIPTION_FIELDS, self.message())

    @classmethod
    def create(cls, key: AccountKey, ledger_domain: TypedDataDomain, token: str,
               amount: int, interval: int, nonce: int,
               deadline: int) -> "SubscriptionAuthorization":
        unsigned = cls(owner=key.address, token=token, amount=amount,
                       interval=interval, nonce=nonce, deadline=deadline,
                       public_key=key.public_key_hex, signature="")
        return cls(**{**asdict(unsigned), "signature": key.sign(unsigned.digest(ledger_domain))})


Authorization = Union[PermitAuthorization, SubscriptionAuthorization]

_ARTIFACT_TYPES = {
    PermitAuthorization.kind: PermitAuthorization,
    SubscriptionAuthorization.kind: SubscriptionAuthorization,
}


def authorization_to_dict(artifact: Authorization) -> dict[str, Any]:
    data = asdict(artifact)
    data = {k: str(v) if k in _ARTIFACT_QUANTITIES else v for k, v in data.items()}
    data["kind"] = artifact.kind
    return data


def authorization_from_dict(data: dict[str, Any]) -> Authorization:
    """Rebuild an artifact from its wire form; raises ValueError if malformed."""
    values = dict(data)
    kind = values.pop("kind", None)
    if kind not in _ARTIFACT_TYPES:
        raise ValueError(f"Unknown authorization kind: {kind!r}")
    values = {k: int(v) if k in _ARTIFACT_QUANTITIES else v for k, v in values.items()}
    try:
        return _ARTIFACT_TYPES[kind](**values)
    except TypeError as e:
        raise ValueError(f"Malformed {kind} authorization: {e}") from e


__all__ = [
    "Authorization",
    "PermitAuthorization",
    "SubscriptionAuthorization",
    "authorization_to_dict",
    "authorization_from_dict",
]
