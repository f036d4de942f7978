# tests/conftest.py
from __future__ import annotations

import os
import time
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-operator-tokens")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from rolegate.core.errors import AssetProviderError, PlatformApiError  # noqa: E402
from rolegate.core.rules import AssetHolding, Exact, RuleField  # noqa: E402
from rolegate.core.settings import settings  # noqa: E402
from rolegate.db.session import Base  # noqa: E402
from rolegate.db.session import get_db as app_get_session  # noqa: E402
from rolegate.main import app as fastapi_app  # noqa: E402
from rolegate.models import LegacyServer, VerifierRule  # noqa: E402
from rolegate.schemas.verification import VerificationTicket  # noqa: E402
from rolegate.services.assets import get_asset_provider  # noqa: E402
from rolegate.services.correlation import PendingReplyStore, get_pending_reply_store  # noqa: E402
from rolegate.services.discord import (  # noqa: E402
    OutcomeNotification,
    RoleGrant,
    get_notification_channel,
    get_platform_role_api,
)
from rolegate.services.kv_store import MemoryKeyValueStore  # noqa: E402
from rolegate.services.matcher import loosely_equal  # noqa: E402
from rolegate.services.nonce import NonceManager, get_nonce_manager  # noqa: E402
from rolegate.services.orchestrator import VerificationOrchestrator  # noqa: E402
from rolegate.services.signature import SignatureVerifier, get_signature_verifier  # noqa: E402
from rolegate.services.sweeper import ReverificationSweeper, get_sweeper  # noqa: E402

TEST_DB_URL = "sqlite://"
SERVER_ID = "900000000000000001"
SUBJECT_ID = "100000000000000001"


class FakeAssetProvider:
    """In-memory holdings keyed by lowercase address; slugs in ``failing_slugs`` raise on count."""

    def __init__(self) -> None:
        self.holdings: dict[str, list[AssetHolding]] = {}
        self.count_calls: list[tuple[str, RuleField, RuleField, RuleField, int | None]] = []
        self.snapshot_calls: list[str] = []
        self.failing_slugs: set[str] = set()

    def give(self, address: str, *holdings: AssetHolding) -> None:
        self.holdings.setdefault(address.lower(), []).extend(holdings)

    def take_all(self, address: str) -> None:
        self.holdings[address.lower()] = []

    async def count_matching(
        self,
        address: str,
        slug: RuleField,
        attribute_key: RuleField,
        attribute_value: RuleField,
        min_items_hint: int | None = None,
    ) -> int:
        self.count_calls.append((address, slug, attribute_key, attribute_value, min_items_hint))
        if isinstance(slug, Exact) and slug.value in self.failing_slugs:
            raise AssetProviderError(f"Lookup for {slug.value} timed out")
        count = 0
        for holding in self.holdings.get(address.lower(), []):
            if isinstance(slug, Exact) and holding.collection_slug != slug.value:
                continue
            if isinstance(attribute_key, Exact) and isinstance(attribute_value, Exact):
                if not loosely_equal(holding.attributes.get(attribute_key.value), attribute_value.value):
                    continue
            count += 1
        return count

    async def snapshot(self, address: str) -> list[AssetHolding]:
        self.snapshot_calls.append(address)
        return list(self.holdings.get(address.lower(), []))

    async def close(self) -> None:
        return None


class FakePlatform:
    """Records role calls; roles listed in ``failing_roles`` raise on assign."""

    def __init__(self) -> None:
        self.roles: set[tuple[str, str, str]] = set()
        self.members: set[tuple[str, str]] = set()
        self.failing_roles: set[str] = set()
        self.failing_revokes: set[str] = set()
        self.assign_calls: list[tuple[str, str, str]] = []
        self.revoke_calls: list[tuple[str, str, str]] = []

    async def assign(self, subject_id: str, role_id: str, server_id: str) -> RoleGrant:
        self.assign_calls.append((subject_id, role_id, server_id))
        if role_id in self.failing_roles:
            raise PlatformApiError(f"Missing permissions for role {role_id}")
        key = (subject_id, role_id, server_id)
        already = key in self.roles
        self.roles.add(key)
        self.members.add((subject_id, server_id))
        return RoleGrant(already_held=already)

    async def revoke(self, subject_id: str, role_id: str, server_id: str) -> bool:
        self.revoke_calls.append((subject_id, role_id, server_id))
        if role_id in self.failing_revokes:
            raise PlatformApiError(f"Cannot remove role {role_id}")
        key = (subject_id, role_id, server_id)
        if key in self.roles:
            self.roles.discard(key)
            return True
        return False

    async def is_member(self, subject_id: str, server_id: str) -> bool:
        return (subject_id, server_id) in self.members

    async def close(self) -> None:
        return None


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[OutcomeNotification] = []

    async def notify(self, notification: OutcomeNotification) -> None:
        self.sent.append(notification)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to behave.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    TestingSession = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits escaped.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def kv_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore(max_entries=100)


@pytest.fixture()
def nonce_manager(kv_store: MemoryKeyValueStore) -> NonceManager:
    return NonceManager(kv_store, ttl_seconds=300)


@pytest.fixture()
def reply_store(kv_store: MemoryKeyValueStore) -> PendingReplyStore:
    return PendingReplyStore(kv_store, ttl_seconds=300)


@pytest.fixture()
def verifier() -> SignatureVerifier:
    return SignatureVerifier(domain_name="verethfier", domain_version="1", chain_id=1)


@pytest.fixture()
def assets() -> FakeAssetProvider:
    return FakeAssetProvider()


@pytest.fixture()
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def wallet() -> Any:
    return Account.create()


@pytest.fixture()
def orchestrator(
    db_session: Session,
    nonce_manager: NonceManager,
    verifier: SignatureVerifier,
    assets: FakeAssetProvider,
    platform: FakePlatform,
    notifier: RecordingNotifier,
) -> VerificationOrchestrator:
    return VerificationOrchestrator.for_session(
        db_session,
        nonces=nonce_manager,
        verifier=verifier,
        assets=assets,
        platform=platform,
        notifier=notifier,
    )


@pytest.fixture()
def sweeper(db_session: Session, assets: FakeAssetProvider, platform: FakePlatform) -> ReverificationSweeper:
    return ReverificationSweeper(
        assets=assets,
        platform=platform,
        db_session=db_session,
        batch_size=2,
        batch_pause_seconds=0,
    )


@pytest.fixture()
def make_ticket(wallet: Any) -> Callable[..., VerificationTicket]:
    """Build a ticket for the test wallet; keyword arguments override fields."""

    def _make(nonce: str, **overrides: Any) -> VerificationTicket:
        fields: dict[str, Any] = {
            "subject_id": SUBJECT_ID,
            "subject_tag": "holder#0001",
            "server_id": SERVER_ID,
            "server_name": "Apes Club",
            "nonce": nonce,
            "expiry_unix_seconds": int(time.time()) + 300,
            "claimed_address": wallet.address,
        }
        fields.update(overrides)
        return VerificationTicket(**fields)

    return _make


@pytest.fixture()
def sign_ticket(wallet: Any, verifier: SignatureVerifier) -> Callable[..., str]:
    """Sign a ticket's EIP-712 message with the test wallet (or ``account``)."""

    def _sign(ticket: VerificationTicket, account: Any | None = None) -> str:
        signer = account or wallet
        signable = encode_typed_data(full_message=verifier.typed_data(ticket))
        signed = Account.sign_message(signable, private_key=signer.key)
        return "0x" + bytes(signed.signature).hex()

    return _sign


@pytest.fixture()
def add_rule(db_session: Session) -> Callable[..., VerifierRule]:
    """Persist a rule for ``SERVER_ID``; keyword arguments map to columns."""

    def _add(role_id: str, **columns: Any) -> VerifierRule:
        row = VerifierRule(server_id=SERVER_ID, role_id=role_id, **columns)
        db_session.add(row)
        db_session.commit()
        return row

    return _add


@pytest.fixture()
def legacy_server(db_session: Session) -> LegacyServer:
    row = LegacyServer(id=SERVER_ID, name="Apes Club", role_id="role-legacy")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def override_services(
    app: FastAPI,
    nonce_manager: NonceManager,
    reply_store: PendingReplyStore,
    verifier: SignatureVerifier,
    assets: FakeAssetProvider,
    platform: FakePlatform,
    notifier: RecordingNotifier,
    sweeper: ReverificationSweeper,
) -> Iterator[None]:
    overrides: dict[Callable[..., Any], Callable[[], Any]] = {
        get_nonce_manager: lambda: nonce_manager,
        get_pending_reply_store: lambda: reply_store,
        get_signature_verifier: lambda: verifier,
        get_asset_provider: lambda: assets,
        get_platform_role_api: lambda: platform,
        get_notification_channel: lambda: notifier,
        get_sweeper: lambda: sweeper,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI, override_services: None) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def operator_headers() -> dict[str, str]:
    now = int(time.time())
    token = jwt.encode(
        {"sub": "bot", "scope": "operator", "iat": now, "exp": now + 600},
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}
