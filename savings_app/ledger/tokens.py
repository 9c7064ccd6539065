"""
Fungible tokens hosted on the same network as the ledger.

Tokens are external collaborators of the savings ledger: they own balances,
allowances and their permit nonces. The ledger only calls their public
operations and treats any ``TokenOperationError`` as a rejected transfer.
"""

from typing import Any, Callable, Optional

from ..auth.signing import TypedDataDomain, normalize_address

TransferHook = Callable[[str, str, int], None]


class TokenOperationError(Exception):
    """A token refused a balance, allowance, nonce or mint operation."""

    def __init__(self, message: str, token: Optional[str] = None,
                 operation: Optional[str] = None):
        super().__init__(message)
        self.token = token
        self.operation = operation


class FungibleToken:
    """Balance and allowance bookkeeping for one token."""

    def __init__(self, address: str, name: str, admin: str,
                 version: str = "1", minter: Optional[str] = None):
        self.address = normalize_address(address)
        self.name = name
        self.version = version
        self.admin = admin.lower()
        self.minter = minter.lower() if minter else None
        self.total_supply = 0
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.nonces: dict[str, int] = {}
        # Called after every balance move with (sender, recipient, amount)
        self.on_transfer: Optional[TransferHook] = None

    def domain(self, chain_id: int) -> TypedDataDomain:
        return TypedDataDomain(self.name, self.version, chain_id, self.address)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account.lower(), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner.lower(), spender.lower()), 0)

    def nonce_of(self, owner: str) -> int:
        return self.nonces.get(owner.lower(), 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        self._check_amount(amount, "approve")
        self.allowances[(owner.lower(), spender.lower())] = amount

    def permit(self, owner: str, spender: str, value: int, nonce: int, deadline: int,
               now: int) -> None:
        """Apply an already signature-checked permit; consumes the permit nonce."""
        self._check_amount(value, "permit")
        if now > deadline:
            raise TokenOperationError("Permit expired", self.address, "permit")
        if nonce != self.nonce_of(owner):
            raise TokenOperationError("Invalid permit nonce", self.address, "permit")
        self.nonces[owner.lower()] = nonce + 1
        self.allowances[(owner.lower(), spender.lower())] = value

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._move(sender.lower(), recipient.lower(), amount)

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        key = (owner.lower(), spender.lower())
        allowed = self.allowances.get(key, 0)
        if allowed < amount:
            raise TokenOperationError("Insufficient allowance", self.address, "transfer_from")
        self.allowances[key] = allowed - amount
        self._move(owner.lower(), recipient.lower(), amount)

    def mint(self, caller: str, recipient: str, amount: int) -> None:
        self._check_amount(amount, "mint")
        if self.minter is None or caller.lower() != self.minter:
            raise TokenOperationError("Caller is not the minter", self.address, "mint")
        self.total_supply += amount
        self.balances[recipient.lower()] = self.balance_of(recipient) + amount

    def set_minter(self, caller: str, minter: str) -> None:
        if caller.lower() != self.admin:
            raise TokenOperationError("Only the token admin can set the minter",
                                      self.address, "set_minter")
        self.minter = minter.lower()

    def snapshot(self) -> dict[str, Any]:
        return {
            "total_supply": self.total_supply,
            "balances": dict(self.balances),
            "allowances": dict(self.allowances),
            "nonces": dict(self.nonces),
            "minter": self.minter,
        }

    def restore(self, snapshot: dict[str, Any]) -> None:
        self.total_supply = snapshot["total_supply"]
        self.balances = dict(snapshot["balances"])
        self.allowances = dict(snapshot["allowances"])
        self.nonces = dict(snapshot["nonces"])
        self.minter = snapshot["minter"]

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        self._check_amount(amount, "transfer")
        balance = self.balances.get(sender, 0)
        if balance < amount:
            raise TokenOperationError("Insufficient balance", self.address, "transfer")
        self.balances[sender] = balance - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        if self.on_transfer is not None:
            self.on_transfer(sender, recipient, amount)

    def _check_amount(self, amount: int, operation: str) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise TokenOperationError(f"Invalid amount: {amount!r}", self.address, operation)


class TokenRegistry:
    """Resolves token addresses to hosted tokens."""

    def __init__(self, tokens: Optional[list[FungibleToken]] = None):
        self._tokens: dict[str, FungibleToken] = {}
        for token in tokens or []:
            self.register(token)

    def register(self, token: FungibleToken) -> FungibleToken:
        self._tokens[token.address] = token
        return token

    def get(self, address: str) -> Optional[FungibleToken]:
        try:
            return self._tokens.get(normalize_address(address))
        except ValueError:
            return None

    def __contains__(self, address: str) -> bool:
        return self.get(address) is not None

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {address: token.snapshot() for address, token in self._tokens.items()}

    def restore(self, snapshot: dict[str, dict[str, Any]]) -> None:
        for address, token_snapshot in snapshot.items():
            self._tokens[address].restore(token_snapshot)
