"""FastAPI dependency factories for the TikTok services.

Every service is built per request from the cached Settings, so tests can
swap configuration or the database through app.dependency_overrides.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db
from services.ingestion import IngestionJob
from services.oauth_handshake import HandshakeStateSigner, OAuthHandshakeController
from services.snapshot_store import SnapshotStore
from services.tiktok_service import TikTokClient
from services.token_vault import TokenVault

SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_tiktok_client(settings: SettingsDep) -> TikTokClient:
    return TikTokClient(settings)


def get_token_vault(settings: SettingsDep) -> TokenVault:
    return TokenVault.from_settings(settings)


def get_state_signer(settings: SettingsDep) -> HandshakeStateSigner:
    return HandshakeStateSigner.from_settings(settings)


def get_snapshot_store(db: Annotated[AsyncSession, Depends(get_db)]) -> SnapshotStore:
    return SnapshotStore(db)


def get_handshake_controller(
    client: Annotated[TikTokClient, Depends(get_tiktok_client)],
    vault: Annotated[TokenVault, Depends(get_token_vault)],
    signer: Annotated[HandshakeStateSigner, Depends(get_state_signer)],
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
) -> OAuthHandshakeController:
    return OAuthHandshakeController(client, vault, signer, store)


def get_ingestion_job(
    store: Annotated[SnapshotStore, Depends(get_snapshot_store)],
    client: Annotated[TikTokClient, Depends(get_tiktok_client)],
    vault: Annotated[TokenVault, Depends(get_token_vault)],
    settings: SettingsDep,
) -> IngestionJob:
    return IngestionJob(store, client, vault, settings)
