"""
Delegated-authorization verification.

One entry point, ``AuthorizationVerifier.verify(artifact, now)``, covers every
artifact shape and returns the owner the artifact speaks for. Verification is
side-effect free; the subscription nonce is advanced separately by
``NonceRegistry.consume`` inside the ledger transaction that accepts the
artifact, so acceptance and advance commit or roll back together.
"""

from typing import Callable, Optional

from ..errors import AuthorizationRejected
from ..logging.config import get_ledger_logger
from .artifacts import Authorization, PermitAuthorization, SubscriptionAuthorization
from .signing import TypedDataDomain, normalize_address, recover_signer

logger = get_ledger_logger(__name__)


class NonceRegistry:
    """Per-owner monotonic authorization nonces."""

    def __init__(self):
        self._nonces: dict[str, int] = {}

    def current(self, owner: str) -> int:
        return self._nonces.get(owner.lower(), 0)

    def consume(self, owner: str, nonce: int) -> int:
        """Advance the owner's nonce past ``nonce``; it must be the current one."""
        current = self.current(owner)
        if nonce != current:
            raise AuthorizationRejected(
                "Authorization nonce mismatch",
                owner=owner,
                reason="nonce",
                context={"expected": current, "got": nonce},
            )
        self._nonces[owner.lower()] = current + 1
        return current + 1

    def snapshot(self) -> dict[str, int]:
        return dict(self._nonces)

    def restore(self, snapshot: dict[str, int]) -> None:
        self._nonces = dict(snapshot)


class AuthorizationVerifier:
    """Validates signed authorization artifacts for the ledger."""

    def __init__(
        self,
        ledger_domain: TypedDataDomain,
        token_domain: Callable[[str], Optional[TypedDataDomain]],
        nonces: NonceRegistry
    ):
        """
        Args:
            ledger_domain: Domain subscription artifacts must be signed under
            token_domain: Resolves a token address to its permit domain
            nonces: Authorization nonce registry owned by the ledger
        """
        self.ledger_domain = ledger_domain
        self.token_domain = token_domain
        self.nonces = nonces

    def verify(self, artifact: Authorization, now: int) -> str:
        """
        Verify an artifact and return the owner it authorizes for.

        Raises:
            AuthorizationRejected: on any signature, deadline, domain or nonce failure
        """
        if isinstance(artifact, SubscriptionAuthorization):
            return self._verify_subscription(artifact, now)
        if isinstance(artifact, PermitAuthorization):
            return self._verify_permit(artifact, now)
        raise AuthorizationRejected(
            f"Unsupported authorization type: {type(artifact).__name__}",
            reason="unsupported",
        )

    def _verify_permit(self, artifact: PermitAuthorization, now: int) -> str:
        domain = self.token_domain(artifact.token)
        if domain is None:
            raise AuthorizationRejected("Permit token has no signing domain",
                                        owner=artifact.owner, reason="domain")

        if not self._same_address(artifact.spender, self.ledger_domain.verifying_contract):
            raise AuthorizationRejected("Permit spender is not this ledger",
                                        owner=artifact.owner, reason="spender")

        owner = self._check_signer(artifact, artifact.digest, domain)
        self._check_deadline(artifact, now)
        return owner

    def _verify_subscription(self, artifact: SubscriptionAuthorization, now: int) -> str:
        owner = self._check_signer(artifact, artifact.digest, self.ledger_domain)
        self._check_deadline(artifact, now)

        expected = self.nonces.current(owner)
        if artifact.nonce != expected:
            raise AuthorizationRejected(
                "Authorization nonce mismatch",
                owner=owner,
                reason="nonce",
                context={"expected": expected, "got": artifact.nonce},
            )
        return owner

    def _check_signer(self, artifact: Authorization, digest_fn, domain: TypedDataDomain) -> str:
        try:
            digest = digest_fn(domain)
            claimed = normalize_address(artifact.owner)
        except ValueError as e:
            raise AuthorizationRejected(f"Malformed authorization: {e}",
                                        owner=artifact.owner, reason="malformed")

        signer = recover_signer(digest, artifact.signature, artifact.public_key)
        if signer is None or signer != claimed:
            logger.warning(
                "Authorization signature rejected",
                owner=artifact.owner,
                kind=artifact.kind,
                recovered=signer,
            )
            raise AuthorizationRejected("Signer does not match owner",
                                        owner=artifact.owner, reason="signature")
        return claimed

    @staticmethod
    def _check_deadline(artifact: Authorization, now: int) -> None:
        if now > artifact.deadline:
            raise AuthorizationRejected(
                "Authorization deadline passed",
                owner=artifact.owner,
                reason="deadline",
                context={"deadline": artifact.deadline, "now": now},
            )

    @staticmethod
    def _same_address(a: str, b: str) -> bool:
        try:
            return normalize_address(a) == normalize_address(b)
        except ValueError:
            return False
