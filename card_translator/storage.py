"""Blob upload and table metadata persistence for processed cards."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Tuple

from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.data.tables import TableClient, TableServiceClient
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient, ContainerClient, ContentSettings

from .card_types import CARD_PARTITION_KEY, CardMetadata, CardRecord, ConfidenceScores
from .errors import StorageError
from .settings import StorageSettings

logger = logging.getLogger(__name__)


class CardStorage(Protocol):
    """Storage collaborator used by the pipeline."""

    def upload_image(self, data: bytes, filename: str, content_type: str) -> str: ...

    def store_metadata(
        self, card: CardRecord, original_url: str, translated_url: str
    ) -> CardMetadata: ...

    def list_metadata(self) -> List[CardMetadata]: ...

    def get_metadata(self, card_id: str) -> Optional[CardMetadata]: ...


def build_blob_name(filename: str, now: Optional[datetime] = None) -> str:
    """Return ``<yyyyMMdd_HHmmss>_<uuid>_<filename>``."""
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{uuid.uuid4().hex}_{filename}"


class AzureCardStorage:
    """Images go to a blob container; metadata rows go to a table."""

    def __init__(
        self,
        container_client: ContainerClient,
        table_client: TableClient,
        *,
        account_name: str = "",
        confidence_field: str = "name",
    ) -> None:
        if confidence_field not in ConfidenceScores.model_fields:
            raise ValueError(f"Unknown confidence field '{confidence_field}'")
        self._container = container_client
        self._table = table_client
        self._account_name = account_name or getattr(
            container_client, "account_name", ""
        ) or ""
        self._confidence_field = confidence_field
        self._resources_ready = False

    @property
    def container_name(self) -> str:
        return getattr(self._container, "container_name", "") or ""

    def ensure_resources(self) -> None:
        """Create the container and table if they do not exist yet.

        Runs once per adapter; writes call it before touching storage.
        """
        if self._resources_ready:
            return
        try:
            try:
                self._container.create_container()
                logger.info("Created container '%s'", self.container_name)
            except ResourceExistsError:
                logger.info("Container '%s' already exists", self.container_name)
            try:
                self._table.create_table()
                logger.info("Created table '%s'", self._table.table_name)
            except ResourceExistsError:
                logger.info("Table '%s' already exists", self._table.table_name)
        except AzureError as exc:
            raise StorageError(f"Failed to prepare card storage: {exc}") from exc
        self._resources_ready = True

    def upload_image(self, data: bytes, filename: str, content_type: str) -> str:
        self.ensure_resources()
        blob_name = build_blob_name(filename)
        try:
            self._container.upload_blob(
                name=blob_name,
                data=data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as exc:
            raise StorageError(f"Failed to upload image {filename}: {exc}") from exc
        logger.info("Uploaded %s as %s", filename, blob_name)
        return self._container.get_blob_client(blob_name).url

    def store_metadata(
        self, card: CardRecord, original_url: str, translated_url: str
    ) -> CardMetadata:
        self.ensure_resources()
        try:
            metadata = CardMetadata.from_card(
                card,
                card_id=str(uuid.uuid4()),
                original_image_url=original_url,
                translated_image_url=translated_url,
                confidence_field=self._confidence_field,
                storage_account=self._account_name,
                container_name=self.container_name,
            )
        except KeyError as exc:
            raise StorageError(f"Cannot build card metadata: {exc}") from exc
        try:
            self._table.create_entity(entity=metadata.to_entity())
        except AzureError as exc:
            raise StorageError(f"Failed to store card metadata: {exc}") from exc
        logger.info("Stored metadata %s for %s", metadata.card_id, metadata.card_name)
        return metadata

    def list_metadata(self) -> List[CardMetadata]:
        """All stored cards, most recently analyzed first."""
        try:
            entities = list(
                self._table.query_entities(f"PartitionKey eq '{CARD_PARTITION_KEY}'")
            )
        except AzureError as exc:
            raise StorageError(f"Failed to list card metadata: {exc}") from exc
        items = [CardMetadata.from_entity(entity) for entity in entities]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        items.sort(key=lambda item: _as_utc(item.analysis_date) or epoch, reverse=True)
        return items

    def get_metadata(self, card_id: str) -> Optional[CardMetadata]:
        try:
            entity = self._table.get_entity(
                partition_key=CARD_PARTITION_KEY, row_key=card_id
            )
        except ResourceNotFoundError:
            return None
        except AzureError as exc:
            raise StorageError(f"Failed to read card metadata {card_id}: {exc}") from exc
        return CardMetadata.from_entity(entity)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_storage_clients(
    settings: StorageSettings,
) -> Tuple[Optional[ContainerClient], Optional[TableClient]]:
    """Return container and table clients, or (None, None) if not configured."""
    if settings.uses_managed_identity:
        if not settings.account_url:
            logger.error(
                "STORAGE_ACCOUNT_URL is required for managed identity storage access"
            )
            return None, None
        table_url = settings.table_url or settings.account_url.replace(
            ".blob.", ".table."
        )
        try:
            credential = DefaultAzureCredential()
            blob_service = BlobServiceClient(
                account_url=settings.account_url, credential=credential
            )
            table_service = TableServiceClient(endpoint=table_url, credential=credential)
        except Exception as exc:
            logger.error(
                "Failed to create storage clients with managed identity: %s", exc
            )
            return None, None
    else:
        if not settings.connection_string:
            logger.error("AzureWebJobsStorage connection string not found in environment")
            return None, None
        try:
            blob_service = BlobServiceClient.from_connection_string(
                settings.connection_string
            )
            table_service = TableServiceClient.from_connection_string(
                settings.connection_string
            )
        except Exception as exc:
            logger.error("Failed to create storage clients: %s", exc)
            return None, None

    return (
        blob_service.get_container_client(settings.container_name),
        table_service.get_table_client(settings.table_name),
    )


def create_card_storage(settings: StorageSettings) -> Optional[AzureCardStorage]:
    """Build the storage adapter; the container and table are created on first write."""
    container, table = create_storage_clients(settings)
    if container is None or table is None:
        return None
    return AzureCardStorage(
        container,
        table,
        account_name=settings.account_name,
        confidence_field=settings.confidence_field,
    )
