"""
Identity Directory

Resolves a phone number into a session: admin (via the injected whitelist)
or recipient (via the phone mapping index).

Resolution order:
1. Whitelisted phone -> bootstrap admin + ledger (idempotent), admin session
2. Phone mapping -> recipient; missing mapping is rebuilt from a recipient
   scan, a mapping to a missing recipient is removed
3. Recipient ledger must match the mapping's ledger (fails closed)
4. First successful login moves INVITED -> JOINED, exactly once

IMPORTANT: A None result means "not registered". Store failures are raised,
never turned into None; login is user-initiated and the user can retry.
"""

from typing import Iterable, Optional

import structlog

from ledger_core.audit import AuditLogger
from ledger_core.errors import AccessCodeUnavailableError, NotFoundError
from ledger_core.models.ledger import (
    AccessCode,
    AccessCodeStatus,
    Admin,
    AdminSession,
    AdminWhitelistEntry,
    Ledger,
    PhoneMapping,
    Recipient,
    RecipientSession,
    RecipientStatus,
    Session,
    SessionRole,
    admin_id_for,
    ledger_id_for,
    recipient_uid_for,
)
from ledger_core.services.storage.interface import (
    ACCESS_CODES,
    ADMINS,
    LEDGERS,
    PHONE_MAPPINGS,
    RECIPIENTS,
    SERVER_TIMESTAMP,
    DocumentRef,
    DocumentStore,
    StoreTransaction,
)
from ledger_core.validation.amounts import require_text
from ledger_core.validation.phone import normalize_phone

logger = structlog.get_logger(__name__)


class IdentityDirectory:
    """
    Phone -> session resolution with self-healing lookups.

    The admin whitelist is handed in at construction; nothing here reads
    global configuration.
    """

    def __init__(
        self,
        store: DocumentStore,
        admin_whitelist: Iterable[AdminWhitelistEntry] = (),
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._admins = {entry.phone_normalized: entry for entry in admin_whitelist}
        self._audit = audit_logger or AuditLogger()

    @property
    def admin_phones(self) -> frozenset[str]:
        return frozenset(self._admins)

    async def resolve(self, phone_raw: str) -> Optional[Session]:
        """
        Resolve a phone number to a session.

        Returns:
            AdminSession, RecipientSession, or None if the phone is not registered

        Raises:
            InvalidPhoneError: If the phone has fewer than 10 digits
            StorageError: On store failures
        """
        phone = normalize_phone(phone_raw)

        entry = self._admins.get(phone)
        if entry is not None:
            session = await self._bootstrap_admin(entry)
            await self._audit.log_session_resolved(SessionRole.ADMIN.value, session.uid, session.ledger_id)
            return session

        mapping = await self._find_mapping(phone)
        if mapping is None:
            await self._audit.log_session_unregistered(phone)
            return None

        recipient_data = await self._store.get(DocumentRef(RECIPIENTS, mapping.recipient_id))
        if recipient_data is None:
            if await self._remove_stale_mapping(phone, mapping.recipient_id):
                await self._audit.log_phone_mapping_stale(mapping.recipient_id, mapping.ledger_id)
            return None

        recipient = Recipient.from_document({"recipientId": mapping.recipient_id, **recipient_data})
        if recipient.deleting:
            return None
        if recipient.ledger_id != mapping.ledger_id:
            await self._audit.log_phone_mapping_inconsistent(
                recipient_id=recipient.recipient_id,
                mapping_ledger_id=mapping.ledger_id,
                recipient_ledger_id=recipient.ledger_id,
            )
            return None

        uid = recipient_uid_for(phone).value
        try:
            recipient, joined_now = await self._join(recipient.recipient_id, uid=uid)
        except NotFoundError:
            # Deleted (or marked deleting) between the read and the join
            return None
        if joined_now:
            await self._audit.log_recipient_joined(recipient.recipient_id, recipient.ledger_id, via="phone")

        await self._audit.log_session_resolved(SessionRole.COWORKER.value, uid, recipient.ledger_id)
        return RecipientSession(
            uid=uid,
            ledger_id=recipient.ledger_id,
            recipient_id=recipient.recipient_id,
            recipient_name=recipient.recipient_name,
            coworker_name=recipient.joined_name or recipient.recipient_name,
        )

    async def redeem_access_code(self, code: str, joined_name: str) -> RecipientSession:
        """
        Bind a person to the recipient slot behind a one-time code.

        The code is marked USED and the recipient joins in one atomic unit.

        Raises:
            InvalidArgumentError: If code or name is blank
            AccessCodeUnavailableError: Unknown, used, or orphaned code
        """
        code = require_text(code, "Access code").upper()
        joined_name = require_text(joined_name, "Name")
        code_ref = DocumentRef(ACCESS_CODES, code)

        async def _redeem(txn: StoreTransaction) -> tuple[Recipient, bool]:
            code_data = await txn.get(code_ref)
            if code_data is None:
                raise AccessCodeUnavailableError("Invalid access code.")
            access = AccessCode.from_document({"code": code, **code_data})
            if access.status != AccessCodeStatus.ACTIVE:
                raise AccessCodeUnavailableError("This access code has already been used.")

            recipient_ref = DocumentRef(RECIPIENTS, access.recipient_id)
            recipient_data = await txn.get(recipient_ref)
            if recipient_data is None:
                raise AccessCodeUnavailableError("This access code is no longer valid.")
            recipient = Recipient.from_document({"recipientId": access.recipient_id, **recipient_data})
            if recipient.deleting or recipient.ledger_id != access.ledger_id:
                raise AccessCodeUnavailableError("This access code is no longer valid.")

            txn.update(code_ref, {
                "status": AccessCodeStatus.USED.value,
                "usedAt": SERVER_TIMESTAMP,
                "joinedName": joined_name,
            })
            if recipient.is_joined:
                return recipient, False
            txn.update(recipient_ref, {
                "status": RecipientStatus.JOINED.value,
                "joinedAt": SERVER_TIMESTAMP,
                "joinedName": joined_name,
                "joinedUid": f"code_{code}",
            })
            return recipient, True

        recipient, joined_now = await self._store.run_transaction(_redeem)
        await self._audit.log_access_code_redeemed(code, recipient.recipient_id, recipient.ledger_id)
        if joined_now:
            await self._audit.log_recipient_joined(recipient.recipient_id, recipient.ledger_id, via="access_code")

        return RecipientSession(
            uid=f"code_{code}",
            ledger_id=recipient.ledger_id,
            recipient_id=recipient.recipient_id,
            recipient_name=recipient.recipient_name,
            coworker_name=joined_name,
            access_code=code,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _bootstrap_admin(self, entry: AdminWhitelistEntry) -> AdminSession:
        """Create whichever of admin / ledger is missing. Never overwrites."""
        phone = entry.phone_normalized
        admin_id = admin_id_for(phone).value
        ledger_id = ledger_id_for(phone).value
        admin_ref = DocumentRef(ADMINS, admin_id)
        ledger_ref = DocumentRef(LEDGERS, ledger_id)

        async def _bootstrap(txn: StoreTransaction) -> tuple[str, bool, bool]:
            admin_data = await txn.get(admin_ref)
            ledger_data = await txn.get(ledger_ref)

            if admin_data is None:
                admin = Admin(
                    admin_id=admin_id,
                    admin_name=entry.admin_name,
                    admin_phone_normalized=phone,
                )
                txn.create(admin_ref, {**admin.to_document(), "createdAt": SERVER_TIMESTAMP})
            if ledger_data is None:
                ledger = Ledger(ledger_id=ledger_id, admin_id=admin_id)
                txn.create(ledger_ref, {**ledger.to_document(), "createdAt": SERVER_TIMESTAMP})

            stored_name = (admin_data or {}).get("adminName")
            return stored_name or entry.admin_name, admin_data is None, ledger_data is None

        admin_name, created_admin, created_ledger = await self._store.run_transaction(_bootstrap)
        if created_admin or created_ledger:
            await self._audit.log_admin_bootstrapped(admin_id, ledger_id, created_admin, created_ledger)

        return AdminSession(
            uid=admin_id,
            admin_id=admin_id,
            admin_name=admin_name,
            ledger_id=ledger_id,
        )

    async def _find_mapping(self, phone: str) -> Optional[PhoneMapping]:
        """Mapping for the phone, rebuilt from the recipients if it is missing."""
        data = await self._store.get(DocumentRef(PHONE_MAPPINGS, phone))
        if data is not None:
            return PhoneMapping.from_document({"phoneNormalized": phone, **data})

        docs = await self._store.query(RECIPIENTS, {"phoneNormalized": phone})
        live = [doc for doc in docs if not doc.data.get("deleting")]
        if not live:
            return None
        if len(live) > 1:
            logger.warning("phone_claimed_by_several_recipients", recipient_ids=[d.id for d in live])

        recipient = Recipient.from_document({"recipientId": live[0].id, **live[0].data})
        mapping = PhoneMapping(
            phone_normalized=phone,
            phone_number=recipient.phone_number,
            recipient_id=recipient.recipient_id,
            ledger_id=recipient.ledger_id,
            recipient_name=recipient.recipient_name,
        )
        await self._store.set(
            DocumentRef(PHONE_MAPPINGS, phone),
            {**mapping.to_document(), "createdAt": SERVER_TIMESTAMP, "updatedAt": SERVER_TIMESTAMP},
        )
        await self._audit.log_phone_mapping_rebuilt(recipient.recipient_id, recipient.ledger_id)
        return mapping

    async def _remove_stale_mapping(self, phone: str, recipient_id: str) -> bool:
        """
        Delete the mapping only if it still points at the vanished recipient.

        A concurrent create_with_phone may have re-claimed the phone since the
        mapping was read; that fresh mapping is left alone.
        """
        mapping_ref = DocumentRef(PHONE_MAPPINGS, phone)
        recipient_ref = DocumentRef(RECIPIENTS, recipient_id)

        async def _remove(txn: StoreTransaction) -> bool:
            data = await txn.get(mapping_ref)
            if data is None or data.get("recipientId") != recipient_id:
                return False
            if await txn.get(recipient_ref) is not None:
                return False
            txn.delete(mapping_ref)
            return True

        return await self._store.run_transaction(_remove)

    async def _join(self, recipient_id: str, uid: str) -> tuple[Recipient, bool]:
        """
        INVITED -> JOINED, guarded by the status read in the same unit.

        Returns the recipient as it stands after the call and whether this
        call performed the transition.
        """
        ref = DocumentRef(RECIPIENTS, recipient_id)

        async def _transition(txn: StoreTransaction) -> tuple[Recipient, bool]:
            data = await txn.get(ref)
            if data is None:
                raise NotFoundError("Recipient not found.")
            recipient = Recipient.from_document({"recipientId": recipient_id, **data})
            if recipient.deleting:
                raise NotFoundError("Recipient is being deleted.")
            if recipient.is_joined:
                return recipient, False

            txn.update(ref, {
                "status": RecipientStatus.JOINED.value,
                "joinedAt": SERVER_TIMESTAMP,
                "joinedName": recipient.recipient_name,
                "joinedUid": uid,
            })
            return recipient.model_copy(update={
                "status": RecipientStatus.JOINED,
                "joined_name": recipient.recipient_name,
                "joined_uid": uid,
            }), True

        return await self._store.run_transaction(_transition)
