"""
Mutation Coordinator

Sequences the multi-step write flows: uploads first, then exactly one
ledger write, then finality.

State machine per mutation:

    Idle -> Uploading -> SubmittingTx -> AwaitingFinality -> Done
    Failed(kind) reachable from any state

ATOMICITY:
All off-chain uploads a mutation needs complete before the ledger write
is attempted. A failed upload never leaves an on-chain reference behind.
A successful upload followed by a failed or declined write leaves an
unreferenced blob, which is harmless.

CANCELLATION:
Once SubmittingTx is reached, submission and the finality wait run
shielded. Cancelling the caller does not abort them.

No automatic retries. Every write-path failure propagates.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..chain.address import is_address
from ..chain.backend import TransactionReceipt
from ..config import uri_for_cid
from ..observability import get_logger
from ..schemas.asset import AnimalProfile, AssetMetadata, AssetProperties, HealthState
from ..schemas.medical import MedicalRecord, MedicalRecordInput
from .errors import ErrorKind, GatewayUnavailable, ValidationError, VetchainError
from .gateway import Transaction
from .session import SessionState

logger = get_logger(__name__)


# Fixed content of the record written alongside every mint
INITIAL_DIAGNOSIS = "Se registro el animal en la blockchain."
INITIAL_TREATMENT = "Se le asigno un chip de identificación."
INITIAL_NOTES = "Registro inicial automático."


class MutationState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    SUBMITTING_TX = "submitting_tx"
    AWAITING_FINALITY = "awaiting_finality"
    DONE = "done"
    FAILED = "failed"


MutationListener = Callable[["Mutation"], None]


@dataclass
class Mutation:
    """Progress of one write flow."""
    operation: str
    state: MutationState = MutationState.IDLE
    history: list[MutationState] = field(default_factory=lambda: [MutationState.IDLE])
    failure: Optional[ErrorKind] = None
    tx_hash: Optional[str] = None
    listener: Optional[MutationListener] = None

    def advance(self, state: MutationState) -> None:
        self.state = state
        self.history.append(state)
        if self.listener is not None:
            self.listener(self)

    def fail(self, error: VetchainError) -> None:
        if self.state == MutationState.FAILED:
            return
        self.failure = error.kind
        self.advance(MutationState.FAILED)

    @property
    def done(self) -> bool:
        return self.state == MutationState.DONE


@dataclass(frozen=True)
class MintResult:
    asset_id: int
    owner: str
    tx_hash: str
    block_number: int
    image_cid: str
    metadata_cid: str
    first_record_cid: str


@dataclass(frozen=True)
class MedicalRecordResult:
    asset_id: int
    cid: str
    health_state: HealthState
    tx_hash: str
    block_number: int


def _require_asset_id(asset_id: object) -> int:
    if isinstance(asset_id, bool) or not isinstance(asset_id, int) or asset_id <= 0:
        raise ValidationError(f"Chip id must be a positive integer, got {asset_id!r}")
    return asset_id


def _require_address(value: object, what: str) -> str:
    if not is_address(value):
        raise ValidationError(f"Invalid {what} address: {value!r}")
    return value


class MutationCoordinator:
    """
    Write-side orchestration over a Session, a LedgerGateway and a ContentStore.

    Every entry point validates its inputs locally first, then makes sure
    the session is connected (one implicit connect attempt), then runs.
    """

    def __init__(
        self,
        session,
        gateway,
        store,
        verify_credentials: bool = True,
        listener: Optional[MutationListener] = None,
    ):
        self._session = session
        self._gateway = gateway
        self._store = store
        self._verify_credentials = verify_credentials
        self._listener = listener

    # ================================================================
    # Shared steps
    # ================================================================

    def _new(self, operation: str, listener: Optional[MutationListener]) -> Mutation:
        return Mutation(operation=operation, listener=listener or self._listener)

    async def _ensure_connected(self) -> str:
        """
        Returns the acting account.

        Raises:
            UserCancelled: the implicit connect was declined
            ProviderUnavailable: no signer
        """
        if self._session.state == SessionState.CONNECTED:
            return self._session.account
        if self._session.state == SessionState.NETWORK_MISMATCH:
            handle = await self._session.acquire()
            return handle.account
        logger.info("Connecting implicitly before write")
        return await self._session.connect()

    async def _require_credential(self, account: str) -> None:
        if not self._verify_credentials:
            return
        if not await self._gateway.has_valid_credential(account, strict=True):
            raise ValidationError(f"{account} holds no valid veterinary credential")

    async def _commit(
        self,
        mutation: Mutation,
        submit: Callable[[], Awaitable[Transaction]],
    ) -> TransactionReceipt:
        mutation.advance(MutationState.SUBMITTING_TX)
        task = asyncio.ensure_future(self._submit_and_wait(mutation, submit))
        task.add_done_callback(_consume_detached_result)
        return await asyncio.shield(task)

    async def _submit_and_wait(
        self,
        mutation: Mutation,
        submit: Callable[[], Awaitable[Transaction]],
    ) -> TransactionReceipt:
        try:
            tx = await submit()
            mutation.tx_hash = tx.tx_hash
            mutation.advance(MutationState.AWAITING_FINALITY)
            receipt = await tx.wait()
        except VetchainError as e:
            mutation.fail(e)
            raise
        except Exception as e:
            mutation.fail(GatewayUnavailable(f"Ledger write failed: {e}"))
            raise
        mutation.advance(MutationState.DONE)
        return receipt

    async def _run(self, mutation: Mutation, flow: Awaitable):
        try:
            return await flow
        except VetchainError as e:
            mutation.fail(e)
            if e.user_facing:
                logger.warning(f"{mutation.operation} failed", kind=e.kind.value, error=e.message)
            else:
                logger.info(f"{mutation.operation} cancelled by user")
            raise

    # ================================================================
    # Mint
    # ================================================================

    async def mint(
        self,
        asset_id: int,
        profile: AnimalProfile,
        image: Optional[bytes],
        owner: Optional[str] = None,
        filename: str = "image.png",
        content_type: str = "image/png",
        listener: Optional[MutationListener] = None,
    ) -> MintResult:
        """
        Register an animal: image -> metadata -> first record -> mint -> finality.

        Raises:
            ValidationError: missing image, bad chip id or owner, no credential
            UserCancelled: connect or signature declined
            StoreUnavailable: an upload failed (nothing written on-ledger)
            LedgerRejected / GatewayUnavailable: the mint failed
        """
        mutation = self._new("mint", listener)
        return await self._run(mutation, self._mint(mutation, asset_id, profile, image, owner, filename, content_type))

    async def _mint(self, mutation, asset_id, profile, image, owner, filename, content_type) -> MintResult:
        if not image:
            raise ValidationError("An image is required to register an animal")
        _require_asset_id(asset_id)
        if owner is not None:
            _require_address(owner, "owner")

        account = await self._ensure_connected()
        owner = owner or account
        await self._require_credential(account)

        mutation.advance(MutationState.UPLOADING)
        image_cid = await self._store.put_bytes(image, filename, content_type)
        metadata = AssetMetadata(
            name=profile.name,
            description=profile.description,
            image=uri_for_cid(image_cid),
            attributes=profile.to_attributes(),
            properties=AssetProperties(chip_id=asset_id, owner_address=owner),
        )
        metadata_cid = await self._store.put_json(metadata)

        first_record = MedicalRecord(
            asset_id=asset_id,
            timestamp=MedicalRecord.now_timestamp(),
            diagnosis=INITIAL_DIAGNOSIS,
            treatment=INITIAL_TREATMENT,
            medications=[],
            notes=INITIAL_NOTES,
            author_address=account,
        )
        first_record_cid = await self._store.put_json(first_record.to_document())

        receipt = await self._commit(
            mutation,
            lambda: self._gateway.mint(owner, asset_id, metadata_cid, first_record_cid),
        )
        logger.info("Asset minted", asset_id=asset_id, owner=owner, tx_hash=receipt.tx_hash)
        return MintResult(
            asset_id=asset_id,
            owner=owner,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            image_cid=image_cid,
            metadata_cid=metadata_cid,
            first_record_cid=first_record_cid,
        )

    # ================================================================
    # Medical record
    # ================================================================

    async def add_medical_record(
        self,
        entry: MedicalRecordInput,
        listener: Optional[MutationListener] = None,
    ) -> MedicalRecordResult:
        """Upload a record document, append its CID, set the health state."""
        mutation = self._new("add_medical_record", listener)
        return await self._run(mutation, self._add_medical_record(mutation, entry))

    async def _add_medical_record(self, mutation: Mutation, entry: MedicalRecordInput) -> MedicalRecordResult:
        _require_asset_id(entry.asset_id)
        health_state = HealthState.from_raw(entry.health_state)

        account = await self._ensure_connected()
        await self._require_credential(account)

        record = MedicalRecord(
            asset_id=entry.asset_id,
            timestamp=MedicalRecord.now_timestamp(),
            diagnosis=entry.diagnosis,
            treatment=entry.treatment,
            medications=entry.medications,
            notes=entry.notes,
            author_address=account,
        )

        mutation.advance(MutationState.UPLOADING)
        cid = await self._store.put_json(record.to_document())

        receipt = await self._commit(
            mutation,
            lambda: self._gateway.append_medical_record(entry.asset_id, cid, health_state),
        )
        logger.info("Medical record appended", asset_id=entry.asset_id, cid=cid, tx_hash=receipt.tx_hash)
        return MedicalRecordResult(
            asset_id=entry.asset_id,
            cid=cid,
            health_state=health_state,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

    # ================================================================
    # Single-step writes
    # ================================================================

    async def transfer(
        self,
        to_address: str,
        asset_id: int,
        listener: Optional[MutationListener] = None,
    ) -> TransactionReceipt:
        """
        Transfer an asset from the connected account.

        A malformed destination fails with ValidationError before any
        ledger round-trip.
        """
        mutation = self._new("transfer", listener)

        async def flow() -> TransactionReceipt:
            _require_address(to_address, "destination")
            _require_asset_id(asset_id)
            account = await self._ensure_connected()
            return await self._commit(
                mutation, lambda: self._gateway.transfer(account, to_address, asset_id)
            )

        return await self._run(mutation, flow())

    async def authorize_veterinarian(
        self,
        vet_address: str,
        listener: Optional[MutationListener] = None,
    ) -> TransactionReceipt:
        mutation = self._new("authorize_veterinarian", listener)

        async def flow() -> TransactionReceipt:
            _require_address(vet_address, "veterinarian")
            await self._ensure_connected()
            return await self._commit(mutation, lambda: self._gateway.authorize_veterinarian(vet_address))

        return await self._run(mutation, flow())

    async def revoke_veterinarian(
        self,
        vet_address: str,
        listener: Optional[MutationListener] = None,
    ) -> TransactionReceipt:
        mutation = self._new("revoke_veterinarian", listener)

        async def flow() -> TransactionReceipt:
            _require_address(vet_address, "veterinarian")
            await self._ensure_connected()
            return await self._commit(mutation, lambda: self._gateway.revoke_veterinarian(vet_address))

        return await self._run(mutation, flow())

    async def set_owner_enabled(
        self,
        owner: str,
        enabled: bool = True,
        listener: Optional[MutationListener] = None,
    ) -> TransactionReceipt:
        mutation = self._new("set_owner_enabled", listener)

        async def flow() -> TransactionReceipt:
            _require_address(owner, "owner")
            await self._ensure_connected()
            return await self._commit(mutation, lambda: self._gateway.set_owner_enabled(owner, enabled))

        return await self._run(mutation, flow())


def _consume_detached_result(task: asyncio.Task) -> None:
    # Retrieve the exception so a detached (caller-cancelled) write is logged once
    if task.cancelled():
        return
    error = task.exception()
    if error is not None and not isinstance(error, VetchainError):
        logger.error("Write failed after submission", error=str(error))
