"""
Firestore Storage Implementation

DESIGN DECISION: Cloud Firestore is the production backend because:
1. It is the store the HisabKitab web client already writes to
2. It offers multi-document transactions with serializable isolation
3. Access rules on userId are enforced server-side

Documents keep the web client's camelCase field names (userId,
deductFromWallet, createdAt, ...) so both clients read the same data.
Amounts are stored as numbers and read back through Decimal(str(x)).

Transactions are retried by the Firestore client on write conflicts.
We do not add a retry layer around them; plain reads are retried with
tenacity when the backend is briefly unavailable.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hisabkitab.config import get_settings
from hisabkitab.models.audit import AuditEvent, AuditEventType, AuditSeverity
from hisabkitab.models.finance import (
    Category,
    Expense,
    ExpenseCreate,
    User,
    Wallet,
    as_utc,
    to_money,
    utcnow,
)
from hisabkitab.services.storage.interface import (
    AuditStore,
    BackendUnavailableError,
    CategoryStore,
    ExpenseStore,
    HisabKitabError,
    LedgerStore,
    LedgerTransaction,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    UserStore,
    WalletStore,
)


T = TypeVar("T")

FIREBASE_APP_NAME = "hisabkitab"

# Python field name -> Firestore field name
EXPENSE_FIELDS = {
    "amount": "amount",
    "date": "date",
    "category": "category",
    "location": "location",
    "description": "description",
    "deduct_from_wallet": "deductFromWallet",
}

CATEGORY_FIELDS = {
    "name": "name",
    "color": "color",
}

USER_FIELDS = {
    "name": "name",
    "email": "email",
    "phone": "phone",
}

read_retry = retry(
    retry=retry_if_exception_type(BackendUnavailableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def translate_backend_error(error: Exception, operation: str) -> HisabKitabError:
    """
    Normalize a google-api-core exception into our error taxonomy.

    This is the only place transport failures are interpreted.
    """
    if isinstance(error, (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)):
        return PermissionDeniedError(
            f"Permission denied while trying to {operation}. "
            "Please ensure you are logged in and have access to this data."
        )
    if isinstance(error, google_exceptions.NotFound):
        return NotFoundError(f"Requested data not found while trying to {operation}")
    if isinstance(error, google_exceptions.FailedPrecondition) and "index" in str(error):
        return StorageError(f"Query requires a Firestore index ({operation}): {error}")
    if isinstance(error, (
        google_exceptions.ServiceUnavailable,
        google_exceptions.DeadlineExceeded,
        google_exceptions.RetryError,
    )):
        return BackendUnavailableError(
            f"Service temporarily unavailable while trying to {operation}. "
            "Please try again in a moment."
        )
    return StorageError(f"Failed to {operation}: {error}")


BACKEND_ERRORS = (google_exceptions.GoogleAPICallError, google_exceptions.RetryError)


def _timestamp(value: Any) -> datetime:
    """Firestore timestamps come back as aware datetimes; pending server stamps as None."""
    if isinstance(value, datetime):
        return as_utc(value)
    return utcnow()


def _snapshot_to_expense(snapshot) -> Expense:
    data = snapshot.to_dict() or {}
    return Expense(
        id=snapshot.id,
        user_id=data.get("userId", ""),
        amount=to_money(data.get("amount")),
        date=_timestamp(data.get("date")),
        category=data.get("category", ""),
        location=data.get("location") or None,
        description=data.get("description") or None,
        deduct_from_wallet=bool(data.get("deductFromWallet", False)),
        created_at=_timestamp(data.get("createdAt")),
        updated_at=_timestamp(data.get("updatedAt")),
    )


def _snapshot_to_wallet(snapshot) -> Wallet:
    data = snapshot.to_dict() or {}
    return Wallet(
        id=snapshot.id,
        user_id=data.get("userId", ""),
        balance=to_money(data.get("balance", 0)),
        created_at=_timestamp(data.get("createdAt")),
        updated_at=_timestamp(data.get("updatedAt")),
    )


def _snapshot_to_category(snapshot) -> Category:
    data = snapshot.to_dict() or {}
    return Category(
        id=snapshot.id,
        name=data.get("name", ""),
        color=data.get("color") or "#6366f1",
        is_default=bool(data.get("isDefault", False)),
        user_id=data.get("userId") or None,
        created_at=_timestamp(data.get("createdAt")),
        updated_at=_timestamp(data.get("updatedAt")),
    )


def _snapshot_to_user(snapshot) -> User:
    data = snapshot.to_dict() or {}
    return User(
        id=snapshot.id,
        name=data.get("name", ""),
        email=data.get("email", ""),
        phone=data.get("phone") or None,
        created_at=_timestamp(data.get("createdAt")),
        updated_at=_timestamp(data.get("updatedAt")),
    )


def _to_document_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


def _map_updates(updates: dict[str, Any], field_map: dict[str, str]) -> dict[str, Any]:
    """Rename Python fields to document fields and stamp updatedAt."""
    doc = {
        field_map[key]: _to_document_value(value)
        for key, value in updates.items()
        if key in field_map
    }
    doc["updatedAt"] = firestore.SERVER_TIMESTAMP
    return doc


def _expense_document(user_id: str, payload: ExpenseCreate) -> dict[str, Any]:
    doc = {
        "userId": user_id,
        "amount": float(payload.amount),
        "date": payload.date,
        "category": payload.category,
        "deductFromWallet": payload.deduct_from_wallet,
        "createdAt": firestore.SERVER_TIMESTAMP,
        "updatedAt": firestore.SERVER_TIMESTAMP,
    }
    # Optional fields are omitted rather than stored as null
    if payload.location:
        doc["location"] = payload.location
    if payload.description:
        doc["description"] = payload.description
    return doc


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles service-account authentication and collection lookup.
    """

    def __init__(self, db: Optional[firestore.AsyncClient] = None):
        self._db = db
        self._settings = get_settings().firebase

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> firestore.AsyncClient:
        """
        Establish the Firestore connection.

        Uses service account credentials for authentication.
        """
        if self._db is None:
            try:
                try:
                    app = firebase_admin.get_app(FIREBASE_APP_NAME)
                except ValueError:
                    cred = credentials.Certificate(self._settings.credentials_path)
                    app = firebase_admin.initialize_app(
                        cred,
                        {"projectId": self._settings.project_id},
                        name=FIREBASE_APP_NAME,
                    )
                self._db = firestore_async.client(app)
            except FileNotFoundError:
                raise BackendUnavailableError(
                    f"Firebase credentials file not found: {self._settings.credentials_path}"
                )
            except ValueError as e:
                raise BackendUnavailableError(f"Invalid Firebase credentials: {e}")
        return self._db

    def collection(self, name: str) -> firestore.AsyncCollectionReference:
        return self.connect().collection(name)

    @property
    def expenses(self) -> firestore.AsyncCollectionReference:
        return self.collection(self._settings.expenses_collection)

    @property
    def wallets(self) -> firestore.AsyncCollectionReference:
        return self.collection(self._settings.wallets_collection)

    @property
    def categories(self) -> firestore.AsyncCollectionReference:
        return self.collection(self._settings.categories_collection)

    @property
    def users(self) -> firestore.AsyncCollectionReference:
        return self.collection(self._settings.users_collection)

    @property
    def audit_log(self) -> firestore.AsyncCollectionReference:
        return self.collection(self._settings.audit_collection)

    def transaction(self) -> firestore.AsyncTransaction:
        return self.connect().transaction()


class FirestoreLedgerTransaction(LedgerTransaction):
    """LedgerTransaction over a live Firestore AsyncTransaction."""

    def __init__(self, client: FirestoreClient, transaction: firestore.AsyncTransaction):
        self._client = client
        self._transaction = transaction

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        snapshot = await self._client.wallets.document(wallet_id).get(
            transaction=self._transaction
        )
        return _snapshot_to_wallet(snapshot) if snapshot.exists else None

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        snapshot = await self._client.expenses.document(expense_id).get(
            transaction=self._transaction
        )
        return _snapshot_to_expense(snapshot) if snapshot.exists else None

    def create_expense(self, user_id: str, payload: ExpenseCreate) -> Expense:
        ref = self._client.expenses.document()
        self._transaction.set(ref, _expense_document(user_id, payload))
        now = utcnow()
        return Expense(
            id=ref.id,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )

    def update_expense(self, expense_id: str, updates: dict[str, Any]) -> None:
        self._transaction.update(
            self._client.expenses.document(expense_id),
            _map_updates(updates, EXPENSE_FIELDS),
        )

    def delete_expense(self, expense_id: str) -> None:
        self._transaction.delete(self._client.expenses.document(expense_id))

    def set_wallet_balance(self, wallet_id: str, balance: Decimal) -> None:
        self._transaction.update(
            self._client.wallets.document(wallet_id),
            {"balance": float(to_money(balance)), "updatedAt": firestore.SERVER_TIMESTAMP},
        )


class FirestoreLedgerStore(LedgerStore):
    """
    Runs ledger functions inside a Firestore transaction.

    firestore.async_transactional retries the function on contention
    and rolls back if it raises.
    """

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    async def run_transaction(
        self,
        fn: Callable[[LedgerTransaction], Awaitable[T]],
    ) -> T:
        @firestore.async_transactional
        async def _run(transaction: firestore.AsyncTransaction) -> T:
            return await fn(FirestoreLedgerTransaction(self._client, transaction))

        try:
            return await _run(self._client.transaction())
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "run transaction")


class FirestoreExpenseStore(ExpenseStore):
    """Expenses collection, one document per expense."""

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    async def create_expense(self, user_id: str, payload: ExpenseCreate) -> Expense:
        try:
            ref = self._client.expenses.document()
            await ref.set(_expense_document(user_id, payload))
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "create expense")

        now = utcnow()
        return Expense(
            id=ref.id,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )

    @read_retry
    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        try:
            snapshot = await self._client.expenses.document(expense_id).get()
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "get expense")
        return _snapshot_to_expense(snapshot) if snapshot.exists else None

    @read_retry
    async def list_expenses(
        self,
        user_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        query = self._client.expenses.where(filter=FieldFilter("userId", "==", user_id))
        if date_from:
            query = query.where(filter=FieldFilter("date", ">=", as_utc(date_from)))
        if date_to:
            query = query.where(filter=FieldFilter("date", "<=", as_utc(date_to)))
        query = query.order_by("date", direction=firestore.Query.DESCENDING)
        if limit:
            query = query.limit(limit)

        try:
            return [_snapshot_to_expense(snapshot) async for snapshot in query.stream()]
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "list expenses")

    async def update_expense(self, expense_id: str, updates: dict[str, Any]) -> Expense:
        ref = self._client.expenses.document(expense_id)
        try:
            await ref.update(_map_updates(updates, EXPENSE_FIELDS))
            snapshot = await ref.get()
        except google_exceptions.NotFound:
            raise NotFoundError(f"Expense not found: {expense_id}")
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "update expense")
        return _snapshot_to_expense(snapshot)

    async def delete_expense(self, expense_id: str) -> bool:
        ref = self._client.expenses.document(expense_id)
        try:
            snapshot = await ref.get()
            if not snapshot.exists:
                return False
            await ref.delete()
            return True
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "delete expense")


class FirestoreWalletStore(WalletStore):
    """Wallets collection, found by userId."""

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    @read_retry
    async def get_wallet(self, user_id: str) -> Optional[Wallet]:
        query = self._client.wallets.where(filter=FieldFilter("userId", "==", user_id)).limit(1)
        try:
            async for snapshot in query.stream():
                return _snapshot_to_wallet(snapshot)
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "get wallet")
        return None

    async def create_wallet(self, user_id: str, balance: Decimal = Decimal("0")) -> Wallet:
        ref = self._client.wallets.document()
        try:
            await ref.set({
                "userId": user_id,
                "balance": float(to_money(balance)),
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "create wallet")
        now = utcnow()
        return Wallet(id=ref.id, user_id=user_id, balance=to_money(balance), created_at=now, updated_at=now)

    async def set_balance(self, wallet_id: str, balance: Decimal) -> Wallet:
        ref = self._client.wallets.document(wallet_id)
        try:
            await ref.update({
                "balance": float(to_money(balance)),
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
            snapshot = await ref.get()
        except google_exceptions.NotFound:
            raise NotFoundError(f"Wallet not found: {wallet_id}")
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "update wallet")
        return _snapshot_to_wallet(snapshot)


class FirestoreCategoryStore(CategoryStore):
    """Categories collection; defaults have no userId."""

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    @read_retry
    async def list_categories(self, user_id: str) -> list[Category]:
        query = (
            self._client.categories
            .where(filter=FieldFilter("userId", "==", user_id))
            .order_by("createdAt", direction=firestore.Query.DESCENDING)
        )
        try:
            return [_snapshot_to_category(s) async for s in query.stream()]
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "list categories")

    @read_retry
    async def list_default_categories(self) -> list[Category]:
        query = self._client.categories.where(filter=FieldFilter("isDefault", "==", True))
        try:
            categories = [_snapshot_to_category(s) async for s in query.stream()]
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "list default categories")
        categories.sort(key=lambda c: c.created_at)
        return categories

    @read_retry
    async def get_category(self, category_id: str) -> Optional[Category]:
        try:
            snapshot = await self._client.categories.document(category_id).get()
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "get category")
        return _snapshot_to_category(snapshot) if snapshot.exists else None

    async def create_category(
        self,
        name: str,
        color: str,
        is_default: bool = False,
        user_id: Optional[str] = None,
    ) -> Category:
        ref = self._client.categories.document()
        doc = {
            "name": name,
            "color": color,
            "isDefault": is_default,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        if user_id:
            doc["userId"] = user_id
        try:
            await ref.set(doc)
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "create category")
        now = utcnow()
        return Category(
            id=ref.id,
            name=name,
            color=color,
            is_default=is_default,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )

    async def update_category(self, category_id: str, updates: dict[str, Any]) -> Category:
        ref = self._client.categories.document(category_id)
        try:
            await ref.update(_map_updates(updates, CATEGORY_FIELDS))
            snapshot = await ref.get()
        except google_exceptions.NotFound:
            raise NotFoundError(f"Category not found: {category_id}")
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "update category")
        return _snapshot_to_category(snapshot)

    async def delete_category(self, category_id: str) -> bool:
        ref = self._client.categories.document(category_id)
        try:
            snapshot = await ref.get()
            if not snapshot.exists:
                return False
            await ref.delete()
            return True
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "delete category")


class FirestoreUserStore(UserStore):
    """Users collection keyed by identity-provider uid."""

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    @read_retry
    async def get_user(self, user_id: str) -> Optional[User]:
        try:
            snapshot = await self._client.users.document(user_id).get()
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "get user")
        return _snapshot_to_user(snapshot) if snapshot.exists else None

    async def upsert_user(self, user: User) -> User:
        ref = self._client.users.document(user.id)
        doc = {
            "name": user.name,
            "email": user.email,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        if user.phone:
            doc["phone"] = user.phone
        try:
            snapshot = await ref.get()
            if not snapshot.exists:
                doc["createdAt"] = firestore.SERVER_TIMESTAMP
            await ref.set(doc, merge=True)
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "save user")
        return user

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> User:
        ref = self._client.users.document(user_id)
        try:
            await ref.update(_map_updates(updates, USER_FIELDS))
            snapshot = await ref.get()
        except google_exceptions.NotFound:
            raise NotFoundError(f"User not found: {user_id}")
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "update user")
        return _snapshot_to_user(snapshot)


class FirestoreAuditStore(AuditStore):
    """
    Firestore implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    def _document_to_event(self, data: dict) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(data["event_id"]),
            timestamp=_timestamp(data.get("timestamp")),
            event_type=AuditEventType(data["event_type"]),
            severity=AuditSeverity(data.get("severity", "info")),
            user_id=data.get("user_id"),
            entity_type=data.get("entity_type"),
            entity_id=data.get("entity_id"),
            correlation_id=UUID(data["correlation_id"]) if data.get("correlation_id") else None,
            description=data.get("description", ""),
            details=data.get("details") or {},
            error_code=data.get("error_code"),
            error_message=data.get("error_message"),
            is_user_action=bool(data.get("is_user_action", False)),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            await self._client.audit_log.document(str(event.event_id)).set(event.to_document())
            return True
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "write audit event")

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        query = self._client.audit_log.where(
            filter=FieldFilter("correlation_id", "==", str(correlation_id))
        )
        try:
            events = [self._document_to_event(s.to_dict()) async for s in query.stream()]
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "get audit events")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, user_id: str, limit: int = 100) -> list[AuditEvent]:
        query = (
            self._client.audit_log
            .where(filter=FieldFilter("user_id", "==", user_id))
            .order_by("timestamp", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        try:
            return [self._document_to_event(s.to_dict()) async for s in query.stream()]
        except BACKEND_ERRORS as e:
            raise translate_backend_error(e, "get audit events")
