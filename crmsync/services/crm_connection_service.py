"""CRM connection registry: CRUD, secret handling, reachability probes and selector checks."""

from __future__ import annotations

import base64
import logging
from uuid import UUID

import httpx
from playwright.async_api import Error as PlaywrightError
from sqlalchemy import select
from sqlalchemy.orm import Session

from crmsync.core.config import settings
from crmsync.core.encryption import decrypt_secret, encrypt_secret
from crmsync.crm.errors import CrmWriteError
from crmsync.crm.registry import parse_backend_type
from crmsync.crm.writers.browser import PageFactory, open_browser_page
from crmsync.crm.writers.oauth_rest import OAuthRestWriter
from crmsync.db.enums import CrmBackendType
from crmsync.db.models import CrmConnection
from crmsync.schemas.crm_connection import (
    BackendConfig,
    ConnectionProbeResult,
    CrmConnectionCreate,
    CrmConnectionRead,
    CrmConnectionUpdate,
    SelectorElementInfo,
    SelectorInspectResult,
    parse_backend_config,
)

logger = logging.getLogger(__name__)

SECRET_FIELDS = frozenset(
    {"login_password", "client_secret", "password", "security_token", "api_key"}
)
MASKED_SECRET = "••••••••"
PROBE_TIMEOUT_MS = 15_000
INSPECT_TIMEOUT_MS = 20_000
HIGHLIGHT_SETTLE_MS = 300


class CrmConnectionServiceError(Exception):
    """Base exception for connection registry errors."""

    pass


class CrmConnectionNotFoundError(CrmConnectionServiceError):
    """Connection not found."""

    pass


# =============================================================================
# Secret handling
# =============================================================================


def encrypt_config(config: dict) -> dict:
    """Encrypt secret values before storage."""
    stored = dict(config or {})
    for key in SECRET_FIELDS & stored.keys():
        if isinstance(stored[key], str):
            stored[key] = encrypt_secret(stored[key])
    return stored


def reveal_config(config: dict) -> dict:
    """Decrypt secret values for use by a writer. Never return this to a client."""
    revealed = dict(config or {})
    for key in SECRET_FIELDS & revealed.keys():
        if isinstance(revealed[key], str):
            revealed[key] = decrypt_secret(revealed[key])
    return revealed


def mask_config(config: dict) -> dict:
    masked = dict(config or {})
    for key in SECRET_FIELDS & masked.keys():
        if masked[key]:
            masked[key] = MASKED_SECRET
    return masked


def merge_config(stored: dict, incoming: dict) -> dict:
    """Apply an update; a masked secret in the update keeps the stored value."""
    merged = {**(stored or {}), **(incoming or {})}
    for key in SECRET_FIELDS & (incoming or {}).keys():
        if incoming[key] == MASKED_SECRET:
            merged[key] = (stored or {}).get(key, "")
    return merged


def resolve_backend_config(connection: CrmConnection) -> BackendConfig:
    """Typed, decrypted config for a stored connection."""
    backend_type = parse_backend_type(connection.backend_type)
    return parse_backend_config(
        backend_type, connection.target_url, reveal_config(connection.config)
    )


def to_read(connection: CrmConnection) -> CrmConnectionRead:
    read = CrmConnectionRead.model_validate(connection)
    return read.model_copy(update={"config": mask_config(connection.config)})


# =============================================================================
# CRUD
# =============================================================================


def list_connections(db: Session, include_inactive: bool = True) -> list[CrmConnection]:
    query = select(CrmConnection)
    if not include_inactive:
        query = query.where(CrmConnection.is_active.is_(True))
    query = query.order_by(CrmConnection.created_at.desc())
    return list(db.execute(query).scalars().all())


def get_connection(db: Session, connection_id: UUID) -> CrmConnection:
    connection = db.get(CrmConnection, connection_id)
    if not connection:
        raise CrmConnectionNotFoundError(f"Connection {connection_id} not found")
    return connection


def create_connection(db: Session, data: CrmConnectionCreate) -> CrmConnection:
    connection = CrmConnection(
        display_name=data.display_name,
        backend_type=data.backend_type.value,
        target_url=data.target_url or None,
        config=encrypt_config(data.config),
        is_active=data.is_active,
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)
    logger.info("Created CRM connection %s (%s)", connection.id, connection.backend_type)
    return connection


def update_connection(
    db: Session, connection_id: UUID, data: CrmConnectionUpdate
) -> CrmConnection:
    connection = get_connection(db, connection_id)
    if data.display_name is not None:
        connection.display_name = data.display_name
    if data.backend_type is not None:
        connection.backend_type = data.backend_type.value
    if "target_url" in data.model_fields_set:
        connection.target_url = data.target_url or None
    if data.config is not None:
        merged = merge_config(connection.config, data.config)
        connection.config = encrypt_config(merged)
    if data.is_active is not None:
        connection.is_active = data.is_active
    db.commit()
    db.refresh(connection)
    logger.info("Updated CRM connection %s", connection.id)
    return connection


def deactivate_connection(db: Session, connection_id: UUID) -> CrmConnection:
    """Connections are never deleted; jobs keep pointing at them."""
    connection = get_connection(db, connection_id)
    connection.is_active = False
    db.commit()
    db.refresh(connection)
    logger.info("Deactivated CRM connection %s", connection.id)
    return connection


# =============================================================================
# Reachability probe
# =============================================================================


async def probe_connection(connection: CrmConnection) -> ConnectionProbeResult:
    """
    Check that a connection's target is reachable, without writing anything.

    - browser_automation: open the URL and read the page title
    - oauth_rest: perform the token exchange
    - generic_rest: HEAD the endpoint (any HTTP response counts as reachable)
    """
    try:
        backend_type = parse_backend_type(connection.backend_type)
        config = resolve_backend_config(connection)
        if backend_type == CrmBackendType.BROWSER_AUTOMATION:
            async with open_browser_page() as page:
                await page.goto(
                    config.login_url, timeout=PROBE_TIMEOUT_MS, wait_until="domcontentloaded"
                )
                return ConnectionProbeResult(ok=True, page_title=await page.title())

        if backend_type == CrmBackendType.OAUTH_REST:
            writer = OAuthRestWriter(config)
            async with httpx.AsyncClient(timeout=settings.CRM_HTTP_TIMEOUT_SECONDS) as client:
                token = await writer.authenticate(client)
            return ConnectionProbeResult(ok=True, detail=f"Authenticated against {token.instance_url}")

        async with httpx.AsyncClient(timeout=settings.CRM_HTTP_TIMEOUT_SECONDS) as client:
            response = await client.head(config.url)
        return ConnectionProbeResult(ok=True, detail=f"HTTP {response.status_code}")

    except (CrmWriteError, PlaywrightError, httpx.HTTPError, ValueError) as exc:
        logger.info("Probe failed for connection %s: %s", connection.id, type(exc).__name__)
        return ConnectionProbeResult(ok=False, detail=str(exc))


# =============================================================================
# Selector inspection
# =============================================================================

HIGHLIGHT_SCRIPT = """(selector) => {
    const els = document.querySelectorAll(selector);
    els.forEach((el) => {
        el.style.outline = '3px solid #ef4444';
        el.style.outlineOffset = '2px';
        el.style.backgroundColor = 'rgba(239,68,68,0.12)';
    });
    if (els[0]) els[0].scrollIntoView({ block: 'center', behavior: 'instant' });
}"""

ELEMENT_INFO_SCRIPT = """(el) => ({
    tag_name: el.tagName.toLowerCase(),
    type: el.getAttribute('type') || '',
    name: el.getAttribute('name') || '',
    id: el.getAttribute('id') || '',
    placeholder: el.getAttribute('placeholder') || '',
    text: (el.textContent || '').trim().slice(0, 80),
})"""


async def inspect_selector(
    url: str, selector: str, page_factory: PageFactory | None = None
) -> SelectorInspectResult:
    """
    Open `url` and report what `selector` matches.

    Used to check browser-automation selectors before saving them. Matches
    are outlined in red on the returned screenshot. An invalid selector
    counts as zero matches; a page that cannot be loaded is reported in
    `error` rather than raised.
    """
    try:
        async with (page_factory or open_browser_page)() as page:
            await page.goto(url, timeout=INSPECT_TIMEOUT_MS, wait_until="domcontentloaded")

            try:
                count = await page.locator(selector).count()
            except PlaywrightError:
                count = 0

            first_element = None
            if count:
                try:
                    await page.evaluate(HIGHLIGHT_SCRIPT, selector)
                    await page.wait_for_timeout(HIGHLIGHT_SETTLE_MS)
                except PlaywrightError as exc:
                    logger.debug("Could not highlight %r: %s", selector, exc)
                try:
                    info = await page.locator(selector).first.evaluate(ELEMENT_INFO_SCRIPT)
                    first_element = SelectorElementInfo.model_validate(info)
                except PlaywrightError as exc:
                    logger.debug("Could not describe first match of %r: %s", selector, exc)

            image = await page.screenshot(type="jpeg", quality=75)
            return SelectorInspectResult(
                count=count,
                first_element=first_element,
                final_url=page.url,
                screenshot=base64.b64encode(image).decode(),
            )

    except PlaywrightError as exc:
        logger.info("Selector inspection failed for %s: %s", url, type(exc).__name__)
        return SelectorInspectResult(count=0, error=str(exc))
