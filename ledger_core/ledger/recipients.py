"""
Recipient Lifecycle

Creates recipient slots and deletes recipients with everything that
references them.

Creation binds a slot either to a phone number (claimed atomically through
the phone mapping) or to a one-time access code.

Deletion is a resumable cascade:
1. Mark the recipient `deleting` (atomic). From here on it takes no new
   transactions and cannot log in.
2. Delete transactions, phone mappings, access codes and the summary in
   size-bounded batches.
3. Delete the recipient document itself, last.
4. Recompute the ledger summary.

A crash anywhere in 2-4 leaves the recipient marked; running the delete
again (or resume_pending_deletions) picks up where it stopped.
"""

import secrets
from typing import Iterable, Optional, Sequence

import structlog

from ledger_core.audit import AuditLogger
from ledger_core.errors import (
    AccessCodeUnavailableError,
    NotFoundError,
    PhoneAlreadyRegisteredError,
)
from ledger_core.ledger.aggregates import AggregateMaintainer
from ledger_core.models.ledger import (
    AccessCode,
    AccessCodeStatus,
    CascadeReport,
    GeneratedId,
    PhoneMapping,
    Recipient,
    RecipientStatus,
)
from ledger_core.services.storage.interface import (
    ACCESS_CODES,
    LEDGERS,
    MAX_BATCH_SIZE,
    PHONE_MAPPINGS,
    RECIPIENT_SUMMARIES,
    RECIPIENTS,
    SERVER_TIMESTAMP,
    TRANSACTIONS,
    DocumentRef,
    DocumentStore,
    StoreTransaction,
)
from ledger_core.validation.amounts import require_text
from ledger_core.validation.phone import normalize_phone

logger = structlog.get_logger(__name__)

# No 0/O or 1/I, so codes survive being read aloud
ACCESS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_access_code(length: int = 8) -> str:
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(length))


def _chunks(refs: Sequence[DocumentRef], size: int) -> Iterable[Sequence[DocumentRef]]:
    for start in range(0, len(refs), size):
        yield refs[start:start + size]


class _CodeTaken(Exception):
    """Generated access code collided with an existing one."""


class RecipientLifecycle:
    """Creation and cascade deletion of recipients."""

    def __init__(
        self,
        store: DocumentStore,
        aggregates: AggregateMaintainer,
        admin_phones: Iterable[str] = (),
        batch_size: int = 400,
        access_code_length: int = 8,
        max_code_attempts: int = 5,
        audit_logger: Optional[AuditLogger] = None,
    ):
        if not 1 <= batch_size <= min(MAX_BATCH_SIZE, store.max_batch_size):
            raise ValueError(f"batch_size must be between 1 and {store.max_batch_size}")
        self._store = store
        self._aggregates = aggregates
        self._admin_phones = frozenset(admin_phones)
        self._batch_size = batch_size
        self._code_length = access_code_length
        self._max_code_attempts = max_code_attempts
        self._audit = audit_logger or AuditLogger()

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def create_with_phone(
        self,
        ledger_id: str,
        recipient_name: str,
        phone_number: str,
    ) -> Recipient:
        """
        Create an INVITED recipient bound to a phone number.

        The phone mapping is the uniqueness guard: it is checked and created
        in the same atomic unit as the recipient.

        Raises:
            InvalidArgumentError / InvalidPhoneError: Before any I/O
            NotFoundError: If the ledger does not exist
            PhoneAlreadyRegisteredError: If the phone belongs to an admin or
                another recipient
        """
        ledger_id = require_text(ledger_id, "Ledger id")
        recipient_name = require_text(recipient_name, "Recipient name")
        phone = normalize_phone(phone_number)

        if phone in self._admin_phones:
            raise PhoneAlreadyRegisteredError("This phone number belongs to an admin.")

        # Mappings can lag behind recipients; a live recipient without one still owns the phone
        existing = await self._store.query(RECIPIENTS, {"phoneNormalized": phone})
        if any(not doc.data.get("deleting") for doc in existing):
            raise PhoneAlreadyRegisteredError("This phone number is already registered.")

        recipient = Recipient(
            recipient_id=GeneratedId().value,
            ledger_id=ledger_id,
            recipient_name=recipient_name,
            phone_number=phone_number.strip(),
            phone_normalized=phone,
            status=RecipientStatus.INVITED,
        )
        mapping = PhoneMapping(
            phone_normalized=phone,
            phone_number=recipient.phone_number,
            recipient_id=recipient.recipient_id,
            ledger_id=ledger_id,
            recipient_name=recipient_name,
        )
        ledger_ref = DocumentRef(LEDGERS, ledger_id)
        recipient_ref = DocumentRef(RECIPIENTS, recipient.recipient_id)
        mapping_ref = DocumentRef(PHONE_MAPPINGS, phone)

        async def _create(txn: StoreTransaction) -> None:
            if await txn.get(ledger_ref) is None:
                raise NotFoundError("Ledger not found.")
            if await txn.get(mapping_ref) is not None:
                raise PhoneAlreadyRegisteredError("This phone number is already registered.")
            txn.create(recipient_ref, {**recipient.to_document(), "createdAt": SERVER_TIMESTAMP})
            txn.create(mapping_ref, {
                **mapping.to_document(),
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            })

        await self._store.run_transaction(_create)
        await self._audit.log_recipient_created(recipient.recipient_id, ledger_id, bound_to="phone")
        return recipient

    async def create_with_access_code(
        self,
        ledger_id: str,
        recipient_name: str,
    ) -> Recipient:
        """
        Create an INVITED recipient bound to a fresh one-time access code.

        Returns the recipient; its access_code carries the code to hand out.

        Raises:
            NotFoundError: If the ledger does not exist
            AccessCodeUnavailableError: If no unused code could be generated
        """
        ledger_id = require_text(ledger_id, "Ledger id")
        recipient_name = require_text(recipient_name, "Recipient name")
        ledger_ref = DocumentRef(LEDGERS, ledger_id)

        for attempt in range(1, self._max_code_attempts + 1):
            code = generate_access_code(self._code_length)
            recipient = Recipient(
                recipient_id=GeneratedId().value,
                ledger_id=ledger_id,
                recipient_name=recipient_name,
                access_code=code,
                status=RecipientStatus.INVITED,
            )
            access = AccessCode(
                code=code,
                recipient_id=recipient.recipient_id,
                ledger_id=ledger_id,
                status=AccessCodeStatus.ACTIVE,
            )
            recipient_ref = DocumentRef(RECIPIENTS, recipient.recipient_id)
            code_ref = DocumentRef(ACCESS_CODES, code)

            async def _create(txn: StoreTransaction) -> None:
                if await txn.get(ledger_ref) is None:
                    raise NotFoundError("Ledger not found.")
                if await txn.get(code_ref) is not None:
                    raise _CodeTaken(code)
                txn.create(recipient_ref, {**recipient.to_document(), "createdAt": SERVER_TIMESTAMP})
                txn.create(code_ref, {**access.to_document(), "createdAt": SERVER_TIMESTAMP})

            try:
                await self._store.run_transaction(_create)
            except _CodeTaken:
                logger.debug("access_code_collision", attempt=attempt)
                continue

            await self._audit.log_recipient_created(
                recipient.recipient_id, ledger_id, bound_to="access_code"
            )
            return recipient

        raise AccessCodeUnavailableError(
            f"Could not allocate an unused access code after {self._max_code_attempts} attempts"
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        data = await self._store.get(DocumentRef(RECIPIENTS, require_text(recipient_id, "Recipient id")))
        if data is None:
            return None
        return Recipient.from_document({"recipientId": recipient_id, **data})

    async def list_recipients(self, ledger_id: str) -> list[Recipient]:
        """Live recipients of a ledger, by name. Recipients being deleted are left out."""
        docs = await self._store.query(RECIPIENTS, {"ledgerId": require_text(ledger_id, "Ledger id")})
        recipients = [
            Recipient.from_document({"recipientId": doc.id, **doc.data})
            for doc in docs
        ]
        return sorted(
            (r for r in recipients if not r.deleting),
            key=lambda r: (r.recipient_name.lower(), r.recipient_id),
        )

    # -------------------------------------------------------------------------
    # Cascade delete
    # -------------------------------------------------------------------------

    async def _mark_deleting(self, recipient_id: str) -> Recipient:
        ref = DocumentRef(RECIPIENTS, recipient_id)

        async def _mark(txn: StoreTransaction) -> Recipient:
            data = await txn.get(ref)
            if data is None:
                raise NotFoundError("Recipient not found.")
            recipient = Recipient.from_document({"recipientId": recipient_id, **data})
            if not recipient.deleting:
                txn.update(ref, {"deleting": True, "deletionStartedAt": SERVER_TIMESTAMP})
            return recipient

        return await self._store.run_transaction(_mark)

    async def delete_recipient(self, recipient_id: str) -> CascadeReport:
        """
        Delete a recipient and everything referencing it.

        Safe to call again after a partial failure; it resumes.

        Raises:
            NotFoundError: If the recipient document no longer exists
            StorageError: If a batch fails (earlier batches stay deleted;
                the recipient stays marked and the call can be repeated)
        """
        recipient_id = require_text(recipient_id, "Recipient id")
        recipient = await self._mark_deleting(recipient_id)
        ledger_id = recipient.ledger_id
        resumed = recipient.deleting
        await self._audit.log_recipient_deletion_started(recipient_id, ledger_id, resumed=resumed)

        txn_docs = await self._store.query(TRANSACTIONS, {"recipientId": recipient_id})
        mapping_docs = await self._store.query(PHONE_MAPPINGS, {"recipientId": recipient_id})
        code_docs = await self._store.query(ACCESS_CODES, {"recipientId": recipient_id})
        summary_ref = DocumentRef(RECIPIENT_SUMMARIES, recipient_id)
        summary_exists = await self._store.get(summary_ref) is not None

        refs: list[DocumentRef] = (
            [DocumentRef(TRANSACTIONS, doc.id) for doc in txn_docs]
            + [DocumentRef(PHONE_MAPPINGS, doc.id) for doc in mapping_docs]
            + [DocumentRef(ACCESS_CODES, doc.id) for doc in code_docs]
        )
        if summary_exists:
            refs.append(summary_ref)

        batches = 0
        for chunk in _chunks(refs, self._batch_size):
            await self._store.delete_batch(chunk)
            batches += 1
            logger.debug(
                "cascade_batch_deleted",
                recipient_id=recipient_id,
                batch=batches,
                size=len(chunk),
            )

        await self._store.delete(DocumentRef(RECIPIENTS, recipient_id))
        ledger_summary = await self._aggregates.recompute_ledger(ledger_id)

        report = CascadeReport(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            transactions_deleted=len(txn_docs),
            phone_mappings_deleted=len(mapping_docs),
            access_codes_deleted=len(code_docs),
            summary_deleted=summary_exists,
            batches_committed=batches,
            resumed=resumed,
            ledger_summary=ledger_summary,
        )
        await self._audit.log_recipient_deleted(
            recipient_id=recipient_id,
            ledger_id=ledger_id,
            transactions_deleted=report.transactions_deleted,
            batches=batches,
        )
        return report

    async def resume_pending_deletions(self, ledger_id: str) -> list[CascadeReport]:
        """Finish every cascade in the ledger that was interrupted."""
        docs = await self._store.query(
            RECIPIENTS,
            {"ledgerId": require_text(ledger_id, "Ledger id"), "deleting": True},
        )
        reports = []
        for doc in docs:
            reports.append(await self.delete_recipient(doc.id))
        if reports:
            logger.info("pending_deletions_resumed", ledger_id=ledger_id, count=len(reports))
        return reports
