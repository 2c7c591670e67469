"""Tests for the browser-automation writer using fake Playwright pages."""

import uuid
from contextlib import asynccontextmanager

import pytest
from playwright.async_api import Error as PlaywrightError

from crmsync.crm.artifacts import ScreenshotStore
from crmsync.crm.errors import NoFieldsToWriteError, PartialFillError
from crmsync.crm.writers.base import JobContext
from crmsync.crm.writers.browser import BrowserAutomationWriter, fill_element
from crmsync.db.enums import CrmBackendType
from crmsync.schemas.crm_connection import BrowserAutomationConfig
from crmsync.schemas.crm_mapping import MappingRule


class FakeElement:
    def __init__(self, page, selector, tag="input", input_type="text", value=None, options=None):
        self.page = page
        self.selector = selector
        self.tag = tag
        self.input_type = input_type
        self.value = value
        self.options = options or {}

    async def evaluate(self, script):
        return self.tag if "tagName" in script else self.input_type

    async def fill(self, value):
        self.page.filled[self.selector] = value

    async def dispatch_event(self, name):
        self.page.events.append((self.selector, name))

    async def select_option(self, value=None, label=None, timeout=None):
        if value is not None and value in self.options:
            self.page.selected[self.selector] = value
            return
        if label is not None:
            for option_value, option_label in self.options.items():
                if option_label == label:
                    self.page.selected[self.selector] = option_value
                    return
        raise PlaywrightError(f"No option matching {value or label}")

    async def set_checked(self, checked):
        self.page.checked[self.selector] = checked

    async def check(self):
        self.page.checked[self.selector] = self.value

    async def get_attribute(self, name):
        return self.value


class FakeLocator:
    def __init__(self, elements):
        self.elements = elements

    @property
    def first(self):
        return self.elements[0]

    async def count(self):
        return len(self.elements)

    def nth(self, index):
        return self.elements[index]


class FakePage:
    def __init__(self):
        self.elements: dict[str, list[FakeElement]] = {}
        self.url = "about:blank"
        self.visited: list[str] = []
        self.filled: dict[str, str] = {}
        self.selected: dict[str, str] = {}
        self.checked: dict = {}
        self.events: list = []
        self.clicked: list[str] = []
        self.screenshots: list[str] = []

    def add(self, selector, **kwargs):
        self.elements.setdefault(selector, []).append(FakeElement(self, selector, **kwargs))
        return self

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        self.url = url

    async def wait_for_selector(self, selector, timeout=None):
        if selector not in self.elements:
            raise PlaywrightError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    def locator(self, selector):
        return FakeLocator(self.elements[selector])

    async def fill(self, selector, value):
        self.filled[selector] = value

    async def click(self, selector):
        self.clicked.append(selector)

    async def wait_for_load_state(self, state, timeout=None):
        pass

    async def screenshot(self, path):
        self.screenshots.append(path)


def _factory(page):
    opened = []

    @asynccontextmanager
    async def open_page():
        opened.append(page)
        yield page

    open_page.opened = opened
    return open_page


def _job(data):
    return JobContext(
        job_id=uuid.uuid4(),
        submission_id=uuid.uuid4(),
        connection_id=uuid.uuid4(),
        form_id=uuid.uuid4(),
        backend_type=CrmBackendType.BROWSER_AUTOMATION.value,
        target_url="https://crm.example.com/login",
        submission_data=data,
    )


def _writer(tmp_path, page, **config):
    values = {"login_url": "https://crm.example.com/login", **config}
    return BrowserAutomationWriter(
        BrowserAutomationConfig(**values),
        screenshots=ScreenshotStore(tmp_path, "/screenshots"),
        page_factory=_factory(page),
    )


FIVE_RULES = [
    MappingRule(source_field="Name", target_field="#name"),
    MappingRule(source_field="Email", target_field="#email"),
    MappingRule(source_field="Phone", target_field="#phone"),
    MappingRule(source_field="City", target_field="#city"),
    MappingRule(source_field="Notes", target_field="#notes"),
]
FIVE_VALUES = {
    "Name": "Ada",
    "Email": "ada@example.com",
    "Phone": "555-0100",
    "City": "London",
    "Notes": "Prefers email",
}


class TestBrowserAutomationWriter:
    @pytest.mark.asyncio
    async def test_partial_fill_names_failed_fields_and_keeps_after_screenshot(self, tmp_path):
        page = FakePage().add("#name").add("#city").add("#notes", tag="textarea")
        writer = _writer(tmp_path, page, form_submit_selector="#save")
        job = _job(FIVE_VALUES)

        with pytest.raises(PartialFillError) as exc_info:
            await writer.write(job, FIVE_RULES)

        error = exc_info.value
        assert error.failed_fields == ["Email", "Phone"]
        assert str(error).startswith("2 field(s) failed to fill: Email, Phone")
        assert error.screenshot_reference == f"/screenshots/crm_{job.job_id}_after.png"
        assert page.clicked == ["#save"]
        assert len(page.screenshots) == 2
        assert page.filled == {"#name": "Ada", "#city": "London", "#notes": "Prefers email"}

    @pytest.mark.asyncio
    async def test_fill_only_succeeds_without_submit(self, tmp_path):
        page = FakePage().add("#name").add("#email")
        writer = _writer(tmp_path, page)
        job = _job({"Name": "Ada", "Email": "ada@example.com"})

        result = await writer.write(job, FIVE_RULES[:2])

        assert result.filled_count == 2
        assert result.screenshot_reference == f"/screenshots/crm_{job.job_id}_before.png"
        assert page.clicked == []
        assert page.screenshots == [str(tmp_path / f"crm_{job.job_id}_before.png")]
        assert ("#email", "change") in page.events

    @pytest.mark.asyncio
    async def test_login_and_navigation(self, tmp_path):
        page = FakePage().add("#user").add("#name")
        writer = _writer(
            tmp_path,
            page,
            login_username="ops",
            login_password="secret",
            login_selector="#user",
            password_selector="#pass",
            login_submit_selector="#login",
            data_entry_url="https://crm.example.com/leads/new",
        )

        await writer.write(_job({"Name": "Ada"}), FIVE_RULES[:1])

        assert page.visited == [
            "https://crm.example.com/login",
            "https://crm.example.com/leads/new",
        ]
        assert page.filled["#user"] == "ops"
        assert page.filled["#pass"] == "secret"
        assert page.clicked == ["#login"]

    @pytest.mark.asyncio
    async def test_no_fields_never_opens_browser(self, tmp_path):
        page = FakePage()
        writer = _writer(tmp_path, page)

        with pytest.raises(NoFieldsToWriteError):
            await writer.write(_job({"Name": ""}), FIVE_RULES)

        assert writer.page_factory.opened == []


class TestFillElement:
    @pytest.mark.asyncio
    async def test_select_falls_back_to_label(self):
        page = FakePage().add("#country", tag="select", options={"uk": "United Kingdom"})
        await fill_element(page, "#country", "United Kingdom", timeout_ms=100)
        assert page.selected["#country"] == "uk"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value,expected", [("yes", True), ("是", True), ("TRUE", True), ("no", False)]
    )
    async def test_checkbox(self, value, expected):
        page = FakePage().add("#optin", input_type="checkbox")
        await fill_element(page, "#optin", value, timeout_ms=100)
        assert page.checked["#optin"] is expected

    @pytest.mark.asyncio
    async def test_radio_picks_matching_value(self):
        page = (
            FakePage()
            .add("input[name=size]", input_type="radio", value="s")
            .add("input[name=size]", input_type="radio", value="m")
        )
        await fill_element(page, "input[name=size]", "m", timeout_ms=100)
        assert page.checked["input[name=size]"] == "m"

    @pytest.mark.asyncio
    async def test_list_values_are_joined_for_text_inputs(self, tmp_path):
        page = FakePage().add("#tags")
        writer = _writer(tmp_path, page)
        await writer.write(
            _job({"Tags": ["a", "b"]}), [MappingRule(source_field="Tags", target_field="#tags")]
        )
        assert page.filled["#tags"] == "a, b"
