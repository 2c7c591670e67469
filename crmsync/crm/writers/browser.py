"""Browser-automation writer (Playwright, headless Chromium).

Steps, all on one page:
    1. login     - open the login URL, fill credentials, click the login button
    2. navigate  - go to the data-entry URL when it differs from the login URL
    3. fill      - fill every mapped field; failures are collected, not fatal
    4. screenshot before submit
    5. submit    - click the form submit button (only if configured)
    6. screenshot after submit

Any fill failure fails the write after steps 4-6 have run, so the latest
screenshot is still kept as the job artifact.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from crmsync.core.config import settings
from crmsync.core.structured_logging import build_log_context, preview
from crmsync.crm.artifacts import ScreenshotStore
from crmsync.crm.errors import NoFieldsToWriteError, PartialFillError
from crmsync.crm.payload import ResolvedField, as_fill_text, resolve_fields
from crmsync.crm.writers.base import JobContext, WriteResult
from crmsync.db.enums import CrmBackendType
from crmsync.schemas.crm_connection import BrowserAutomationConfig
from crmsync.schemas.crm_mapping import MappingRule

logger = logging.getLogger(__name__)

CHECKBOX_TRUE_VALUES = frozenset({"true", "1", "是", "yes", "checked"})
LOGIN_WAIT_TIMEOUT_MS = 8_000
SUBMIT_WAIT_TIMEOUT_MS = 20_000
VIEWPORT = {"width": 1280, "height": 800}
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)

PageFactory = Callable[[], AbstractAsyncContextManager[Page]]


@asynccontextmanager
async def open_browser_page() -> AsyncIterator[Page]:
    """Launch headless Chromium and yield a fresh page; the browser is always closed."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(
            headless=settings.CRM_BROWSER_HEADLESS,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        try:
            context = await browser.new_context(
                viewport=VIEWPORT,
                ignore_https_errors=True,
                user_agent=USER_AGENT,
            )
            yield await context.new_page()
        finally:
            await browser.close()


async def fill_element(page: Page, selector: str, value: str, *, timeout_ms: int) -> None:
    """Fill one control according to its element kind."""
    await page.wait_for_selector(selector, timeout=timeout_ms)
    element = page.locator(selector).first
    tag_name = await element.evaluate("el => el.tagName.toLowerCase()")
    input_type = await element.evaluate("el => (el.type || '').toLowerCase()")

    if tag_name == "select":
        try:
            await element.select_option(value=value, timeout=timeout_ms)
        except PlaywrightError:
            await element.select_option(label=value, timeout=timeout_ms)
    elif input_type == "checkbox":
        await element.set_checked(value.strip().lower() in CHECKBOX_TRUE_VALUES)
    elif input_type == "radio":
        radios = page.locator(selector)
        count = await radios.count()
        for index in range(count):
            candidate = radios.nth(index)
            if await candidate.get_attribute("value") == value:
                await candidate.check()
                return
        await radios.first.check()
    else:
        # Clear first so the value replaces rather than appends
        await element.fill("")
        await element.fill(value)
        await element.dispatch_event("change")


class BrowserAutomationWriter:
    backend_type = CrmBackendType.BROWSER_AUTOMATION

    def __init__(
        self,
        config: BrowserAutomationConfig,
        *,
        screenshots: ScreenshotStore | None = None,
        page_factory: PageFactory | None = None,
        navigation_timeout_ms: int | None = None,
        field_timeout_ms: int | None = None,
    ):
        self.config = config
        self.screenshots = screenshots or ScreenshotStore()
        self.page_factory = page_factory or open_browser_page
        self.navigation_timeout_ms = (
            navigation_timeout_ms or settings.CRM_BROWSER_NAVIGATION_TIMEOUT_MS
        )
        self.field_timeout_ms = field_timeout_ms or settings.CRM_BROWSER_FIELD_TIMEOUT_MS

    async def write(self, job: JobContext, rules: list[MappingRule]) -> WriteResult:
        fields = resolve_fields(job.submission_data, rules)
        if not fields:
            raise NoFieldsToWriteError("the CRM form")

        logger.info(
            "Browser automation starting for %s (%s field(s))",
            self.config.login_url,
            len(fields),
            extra=build_log_context(job_id=job.job_id, backend=self.backend_type.value),
        )
        async with self.page_factory() as page:
            return await self.run_steps(page, job, fields)

    async def run_steps(
        self, page: Page, job: JobContext, fields: list[ResolvedField]
    ) -> WriteResult:
        await self.login(page)
        await self.navigate(page)
        failures = await self.fill(page, fields)

        artifact = await self.screenshot(page, job, "before")
        if self.config.form_submit_selector:
            await self.submit(page)
            artifact = await self.screenshot(page, job, "after")

        if failures:
            raise PartialFillError(failures, screenshot_reference=artifact)

        return WriteResult(screenshot_reference=artifact, filled_count=len(fields))

    async def login(self, page: Page) -> None:
        config = self.config
        await page.goto(
            config.login_url, timeout=self.navigation_timeout_ms, wait_until="networkidle"
        )
        if config.login_selector and config.login_username:
            await page.wait_for_selector(config.login_selector, timeout=LOGIN_WAIT_TIMEOUT_MS)
            await page.fill(config.login_selector, config.login_username)
        if config.password_selector and config.login_password:
            await page.fill(config.password_selector, config.login_password)
        if config.login_submit_selector:
            await page.click(config.login_submit_selector)
            await page.wait_for_load_state("networkidle", timeout=SUBMIT_WAIT_TIMEOUT_MS)
            logger.info("Logged in, now at %s", page.url)

    async def navigate(self, page: Page) -> None:
        target = self.config.data_entry_url
        if target and target != self.config.login_url:
            await page.goto(
                target, timeout=self.navigation_timeout_ms, wait_until="networkidle"
            )

    async def fill(self, page: Page, fields: list[ResolvedField]) -> list[tuple[str, str]]:
        """Fill each field independently; return (label, reason) for failures."""
        failures: list[tuple[str, str]] = []
        for field in fields:
            text = as_fill_text(field.value)
            try:
                await fill_element(page, field.target, text, timeout_ms=self.field_timeout_ms)
            except PlaywrightError as exc:
                reason = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
                failures.append((field.label, f"{field.target}: {reason}"))
                logger.warning("Failed to fill %s (%s): %s", field.label, field.target, reason)
                continue
            logger.debug("Filled %s -> %s = %r", field.label, field.target, preview(text))
        return failures

    async def screenshot(self, page: Page, job: JobContext, stage: str) -> str:
        await page.screenshot(path=str(self.screenshots.path_for(job.job_id, stage)))
        return self.screenshots.reference_for(job.job_id, stage)

    async def submit(self, page: Page) -> None:
        await page.click(self.config.form_submit_selector)
        await page.wait_for_load_state("networkidle", timeout=SUBMIT_WAIT_TIMEOUT_MS)
