"""
In-Memory Ledger

Emulates the three deployed contracts for development and testing:

- Authority Registry (credential registry):
    tieneCredencialValida(vet) -> bool
- Identity Registry (ERC-721 enumerable + owner gate):
    mint(to, chipId, animalCid, firstReportCid)
    setOwnerEnabled(owner, enabled)
    transferFrom(from, to, tokenId)
    balanceOf(owner) -> uint
    tokenOfOwnerByIndex(owner, index) -> uint
    tokenURI(tokenId) -> string
- Medical Ledger:
    agregarRegistroMedico(chipId, cid, nuevoEstado)
    obtenerHistorialMedico(chipId) -> string[]
    obtenerEstadoSalud(chipId) -> uint8
    authorizeVeterinarian(vetAddress)
    revokeVeterinarian(vetAddress)
    obtenerVeterinariosAutorizados(owner) -> address[]
    isVetAuthorized(owner, vetAddress) -> bool

Writes execute when the transaction is mined, i.e. inside
PendingTransaction.wait(), one block per transaction. Submission only
checks the signer. This keeps "submitted" and "final" distinct, as on a
real network.

Failure injection hooks (set_offline, decline_next_transaction,
revert_next_at_finality) exist so tests can drive every error kind.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config import uri_for_cid
from ..core.hasher import Hasher
from .address import ZERO_ADDRESS, is_address
from .backend import (
    ContractName,
    ExecutionReverted,
    LedgerBackend,
    PendingTransaction,
    RequestRejected,
    TransactionReceipt,
    TransportFailure,
)


@dataclass
class RecordedCall:
    """One call that reached the backend (for call-count assertions)."""
    contract: ContractName
    function: str
    args: tuple
    sender: Optional[str] = None


@dataclass
class _Contracts:
    """Emulated contract storage."""
    credentials: set = field(default_factory=set)
    identity_managers: set = field(default_factory=set)
    owner_enabled: dict = field(default_factory=dict)     # owner -> bool
    owners: dict = field(default_factory=dict)            # asset_id -> owner
    owned: dict = field(default_factory=dict)             # owner -> [asset_id]
    token_uris: dict = field(default_factory=dict)        # asset_id -> uri
    history: dict = field(default_factory=dict)           # asset_id -> [cid]
    health: dict = field(default_factory=dict)            # asset_id -> 0/1/2
    authorized: dict = field(default_factory=dict)        # owner -> [vet]


class InMemoryPendingTransaction(PendingTransaction):
    """A submitted transaction; executes on wait()."""

    def __init__(
        self,
        ledger: "InMemoryLedger",
        tx_hash: str,
        contract: ContractName,
        function: str,
        sender: str,
        effect: Callable[[], None],
    ):
        self._ledger = ledger
        self._tx_hash = tx_hash
        self._contract = contract
        self._function = function
        self._sender = sender
        self._effect = effect
        self._receipt: Optional[TransactionReceipt] = None
        self._lock = asyncio.Lock()

    @property
    def tx_hash(self) -> str:
        return self._tx_hash

    async def wait(self) -> TransactionReceipt:
        async with self._lock:
            if self._receipt is None:
                self._receipt = await self._ledger._mine(self)
        if not self._receipt.succeeded:
            raise ExecutionReverted(self._ledger._revert_reasons.get(self._tx_hash))
        return self._receipt


class InMemoryLedger(LedgerBackend):
    """
    In-memory emulation of the deployed contracts.

    Not persistent. Every instance is an independent network.
    """

    def __init__(self, finality_delay: float = 0.0, call_delay: float = 0.0):
        self._state = _Contracts()
        self._block_number = 0
        self._nonces: dict[str, int] = {}
        self._revert_reasons: dict[str, str] = {}
        self._finality_delay = finality_delay
        self._call_delay = call_delay

        # Failure injection
        self._offline = False
        self._declines_pending = 0
        self._finality_reverts: list[str] = []

        # Call log
        self.calls: list[RecordedCall] = []
        self.transactions: list[RecordedCall] = []

        self._views: dict[tuple[ContractName, str], Callable[..., Any]] = {
            (ContractName.CREDENTIAL_REGISTRY, "tieneCredencialValida"): self._has_credential,
            (ContractName.IDENTITY_REGISTRY, "balanceOf"): self._balance_of,
            (ContractName.IDENTITY_REGISTRY, "tokenOfOwnerByIndex"): self._token_of_owner_by_index,
            (ContractName.IDENTITY_REGISTRY, "tokenURI"): self._token_uri,
            (ContractName.MEDICAL_LEDGER, "obtenerHistorialMedico"): self._history,
            (ContractName.MEDICAL_LEDGER, "obtenerEstadoSalud"): self._health_state,
            (ContractName.MEDICAL_LEDGER, "obtenerVeterinariosAutorizados"): self._authorized_vets,
            (ContractName.MEDICAL_LEDGER, "isVetAuthorized"): self._is_vet_authorized,
        }
        self._writes: dict[tuple[ContractName, str], Callable[..., Callable[[], None]]] = {
            (ContractName.IDENTITY_REGISTRY, "mint"): self._mint,
            (ContractName.IDENTITY_REGISTRY, "setOwnerEnabled"): self._set_owner_enabled,
            (ContractName.IDENTITY_REGISTRY, "transferFrom"): self._transfer_from,
            (ContractName.MEDICAL_LEDGER, "agregarRegistroMedico"): self._append_record,
            (ContractName.MEDICAL_LEDGER, "authorizeVeterinarian"): self._authorize_vet,
            (ContractName.MEDICAL_LEDGER, "revokeVeterinarian"): self._revoke_vet,
        }

    # ================================================================
    # ADMINISTRATION (outside the write surface the app uses)
    # ================================================================

    def grant_credential(self, vet: str) -> None:
        """Issue a valid credential (what the college of vets would do)."""
        self._state.credentials.add(vet.lower())

    def revoke_credential(self, vet: str) -> None:
        self._state.credentials.discard(vet.lower())

    def add_identity_manager(self, manager: str) -> None:
        """Grant the role allowed to toggle owner enablement."""
        self._state.identity_managers.add(manager.lower())

    def enable_owner(self, owner: str, enabled: bool = True) -> None:
        """Set an owner flag directly, bypassing the role check."""
        self._state.owner_enabled[owner.lower()] = enabled

    @property
    def block_number(self) -> int:
        return self._block_number

    # ================================================================
    # FAILURE INJECTION
    # ================================================================

    def set_offline(self, offline: bool = True) -> None:
        """Every call and submission raises TransportFailure while offline."""
        self._offline = offline

    def decline_next_transaction(self, count: int = 1) -> None:
        """The signer declines the next `count` submissions."""
        self._declines_pending += count

    def revert_next_at_finality(self, reason: str) -> None:
        """The next mined transaction reverts with `reason`."""
        self._finality_reverts.append(reason)

    # ================================================================
    # LedgerBackend
    # ================================================================

    async def call(self, contract: ContractName, function: str, args: tuple) -> Any:
        self.calls.append(RecordedCall(contract, function, tuple(args)))
        if self._call_delay:
            await asyncio.sleep(self._call_delay)
        if self._offline:
            raise TransportFailure("ledger unreachable")

        view = self._views.get((contract, function))
        if view is None:
            raise ExecutionReverted(f"unknown function {contract.value}.{function}")
        return view(*args)

    async def transact(
        self,
        contract: ContractName,
        function: str,
        args: tuple,
        sender: str,
    ) -> PendingTransaction:
        self.transactions.append(RecordedCall(contract, function, tuple(args), sender))
        if self._offline:
            raise TransportFailure("ledger unreachable")
        if self._declines_pending > 0:
            self._declines_pending -= 1
            raise RequestRejected("User denied transaction signature")

        builder = self._writes.get((contract, function))
        if builder is None:
            raise ExecutionReverted(f"unknown function {contract.value}.{function}")

        key = sender.lower()
        nonce = self._nonces.get(key, 0)
        self._nonces[key] = nonce + 1
        tx_hash = Hasher.transaction_hash({
            "contract": contract.value,
            "function": function,
            "args": [str(a) for a in args],
            "sender": key,
            "nonce": nonce,
        })

        return InMemoryPendingTransaction(
            ledger=self,
            tx_hash=tx_hash,
            contract=contract,
            function=function,
            sender=key,
            effect=lambda: builder(key, *args),
        )

    async def _mine(self, tx: InMemoryPendingTransaction) -> TransactionReceipt:
        if self._finality_delay:
            await asyncio.sleep(self._finality_delay)
        if self._offline:
            raise TransportFailure("ledger unreachable while awaiting receipt")

        self._block_number += 1
        status = 1
        if self._finality_reverts:
            self._revert_reasons[tx.tx_hash] = self._finality_reverts.pop(0)
            status = 0
        else:
            try:
                tx._effect()
            except ExecutionReverted as e:
                self._revert_reasons[tx.tx_hash] = e.reason or ""
                status = 0

        return TransactionReceipt(
            tx_hash=tx.tx_hash,
            block_number=self._block_number,
            status=status,
            sender=tx._sender,
            contract=tx._contract,
            function=tx._function,
        )

    # ================================================================
    # VIEWS
    # ================================================================

    def _has_credential(self, vet: str) -> bool:
        return vet.lower() in self._state.credentials

    def _balance_of(self, owner: str) -> int:
        if not is_address(owner) or owner.lower() == ZERO_ADDRESS:
            raise ExecutionReverted("ERC721: address zero is not a valid owner")
        return len(self._state.owned.get(owner.lower(), []))

    def _token_of_owner_by_index(self, owner: str, index: int) -> int:
        tokens = self._state.owned.get(owner.lower(), [])
        if index < 0 or index >= len(tokens):
            raise ExecutionReverted("ERC721Enumerable: owner index out of bounds")
        return tokens[index]

    def _token_uri(self, asset_id: int) -> str:
        if asset_id not in self._state.owners:
            raise ExecutionReverted("ERC721: invalid token ID")
        return self._state.token_uris[asset_id]

    def _history(self, asset_id: int) -> list[str]:
        return list(self._state.history.get(asset_id, []))

    def _health_state(self, asset_id: int) -> int:
        return self._state.health.get(asset_id, 0)

    def _authorized_vets(self, owner: str) -> list[str]:
        return list(self._state.authorized.get(owner.lower(), []))

    def _is_vet_authorized(self, owner: str, vet: str) -> bool:
        return vet.lower() in self._state.authorized.get(owner.lower(), [])

    def owner_of(self, asset_id: int) -> Optional[str]:
        """Current owner (test/CLI convenience, not part of the read surface)."""
        return self._state.owners.get(asset_id)

    def is_owner_enabled(self, owner: str) -> bool:
        return self._state.owner_enabled.get(owner.lower(), False)

    # ================================================================
    # WRITES (executed at mining time)
    # ================================================================

    def _require(self, condition: bool, reason: str) -> None:
        if not condition:
            raise ExecutionReverted(reason)

    def _mint(self, sender: str, to: str, asset_id: int, animal_cid: str, first_report_cid: str) -> None:
        s = self._state
        self._require(sender in s.credentials, "caller is not a licensed veterinarian")
        self._require(is_address(to) and to.lower() != ZERO_ADDRESS, "ERC721: mint to the zero address")
        self._require(s.owner_enabled.get(to.lower(), False), "owner is not enabled")
        self._require(isinstance(asset_id, int) and asset_id > 0, "invalid chip id")
        self._require(asset_id not in s.owners, "ERC721: token already minted")
        self._require(bool(animal_cid) and bool(first_report_cid), "empty cid")

        owner = to.lower()
        s.owners[asset_id] = owner
        s.owned.setdefault(owner, []).append(asset_id)
        s.token_uris[asset_id] = uri_for_cid(animal_cid)
        s.history[asset_id] = [first_report_cid]
        s.health[asset_id] = 0

    def _set_owner_enabled(self, sender: str, owner: str, enabled: bool) -> None:
        self._require(sender in self._state.identity_managers, "caller is not an identity manager")
        self._require(is_address(owner), "invalid owner address")
        self._state.owner_enabled[owner.lower()] = bool(enabled)

    def _transfer_from(self, sender: str, from_: str, to: str, asset_id: int) -> None:
        s = self._state
        current = s.owners.get(asset_id)
        self._require(current is not None, "ERC721: invalid token ID")
        self._require(current == from_.lower(), "ERC721: transfer from incorrect owner")
        self._require(sender == current, "ERC721: caller is not token owner or approved")
        self._require(is_address(to) and to.lower() != ZERO_ADDRESS, "ERC721: transfer to the zero address")
        self._require(s.owner_enabled.get(to.lower(), False), "owner is not enabled")

        # ERC721Enumerable: swap-and-pop removal
        tokens = s.owned[current]
        index = tokens.index(asset_id)
        tokens[index] = tokens[-1]
        tokens.pop()

        new_owner = to.lower()
        s.owners[asset_id] = new_owner
        s.owned.setdefault(new_owner, []).append(asset_id)

    def _append_record(self, sender: str, asset_id: int, cid: str, new_state: int) -> None:
        s = self._state
        owner = s.owners.get(asset_id)
        self._require(owner is not None, "animal not registered")
        self._require(sender in s.credentials, "caller is not a licensed veterinarian")
        self._require(
            sender == owner or sender in s.authorized.get(owner, []),
            "veterinarian not authorized by owner",
        )
        self._require(bool(cid), "empty cid")
        self._require(new_state in (0, 1, 2), "invalid health state")

        s.history.setdefault(asset_id, []).append(cid)
        s.health[asset_id] = new_state

    def _authorize_vet(self, sender: str, vet: str) -> None:
        s = self._state
        self._require(is_address(vet), "invalid veterinarian address")
        self._require(vet.lower() in s.credentials, "address has no valid credential")
        vets = s.authorized.setdefault(sender, [])
        self._require(vet.lower() not in vets, "veterinarian already authorized")
        vets.append(vet.lower())

    def _revoke_vet(self, sender: str, vet: str) -> None:
        vets = self._state.authorized.get(sender, [])
        self._require(vet.lower() in vets, "veterinarian not authorized")
        vets.remove(vet.lower())
