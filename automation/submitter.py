"""
Per-row form filling and submission on top of Playwright.

``FormSubmitter.process_row`` is the row processor handed to the batch
executor and the retry engine: it opens the row's URL, detects forms,
suggests a mapping for every field, types the row's values into the first
form that has at least one matching field and submits that form.
"""

import logging
import random
from typing import Any, Dict, List, Mapping, Optional, Sequence

from playwright.async_api import BrowserContext, Page

from automation.fallback import FallbackHandler
from automation.models import (
    FallbackContext,
    FormNotFoundError,
    FormSubmissionError,
    NoMatchingFieldsError,
    SubmissionResult,
)
from config import config, AppConfig
from core.utils import is_sensitive_field, redact_field_value
from detection import (
    DEFAULT_MAPPING_RULES,
    FieldDescriptor,
    FormDescriptor,
    MappingRule,
    MappingSuggestion,
    detect_forms,
    extract_form_metadata,
    fallback_visual_detection,
    snapshot_page,
    suggest_mappings,
)

logger = logging.getLogger(__name__)

SUBMIT_BUTTON_SELECTOR = '[type="submit"], button:not([type])'


async def detect_page_forms(page: Page, app_config: AppConfig) -> List[FormDescriptor]:
    """
    Detect forms on a page, using the visual fallback when no ``<form>`` has
    any usable field.
    """
    snapshot = await snapshot_page(page)
    containers = detect_forms(snapshot, max_depth=app_config.detection.max_shadow_depth)
    forms = [
        extract_form_metadata(container, max_fields=app_config.detection.max_form_elements)
        for container in containers
    ]
    forms = [form for form in forms if form.fields]
    if forms:
        return forms
    logger.info("No structural form with usable fields; trying visual detection")
    return fallback_visual_detection(
        snapshot, threshold=app_config.detection.visual_proximity_threshold
    )


class FormSubmitter:
    def __init__(
        self,
        context: BrowserContext,
        rules: Optional[Sequence[MappingRule]] = None,
        app_config: Optional[AppConfig] = None,
        fallback: Optional[FallbackHandler] = None,
    ):
        self.context = context
        self.rules = list(DEFAULT_MAPPING_RULES if rules is None else rules)
        self.app_config = app_config or config
        self.fallback = fallback or FallbackHandler(self.app_config.automation)

    def _resolve_url(self, row: Mapping[str, Any]) -> str:
        url = row.get(self.app_config.automation.url_key) or self.app_config.automation.default_url
        if not url:
            raise FormSubmissionError(
                f"Row has no '{self.app_config.automation.url_key}' value and no default URL is configured"
            )
        return url

    def _value_for(self, suggestion: MappingSuggestion, data: Mapping[str, Any]) -> Any:
        field = suggestion.field
        for key in (suggestion.mapping, field.name, field.id):
            if not key or key == self.app_config.automation.url_key:
                continue
            value = data.get(key)
            if value is not None and value != "":
                return value
        return None

    async def _fill_field(self, page: Page, field: FieldDescriptor, value: Any) -> None:
        locator = page.locator(field.element.selector)
        if field.type.startswith("select"):
            await locator.select_option(str(value))
        elif field.type in ("checkbox", "radio"):
            await locator.set_checked(bool(value))
        else:
            automation = self.app_config.automation
            await locator.click(click_count=3)
            await locator.type(
                str(value),
                delay=random.uniform(automation.typing_min_delay_ms, automation.typing_max_delay_ms),
            )
        shown = redact_field_value(value) if is_sensitive_field(field.key) else value
        logger.debug(f"Filled field '{field.key}' with value: {shown}")

    async def _fill_form(
        self, page: Page, form: FormDescriptor, data: Mapping[str, Any]
    ) -> List[FieldDescriptor]:
        filled = []
        for suggestion in suggest_mappings(form.fields, self.rules):
            value = self._value_for(suggestion, data)
            if value is None or suggestion.field.element is None:
                continue
            await self._fill_field(page, suggestion.field, value)
            filled.append(suggestion.field)
        return filled

    async def _submit(self, page: Page, form: FormDescriptor, filled: List[FieldDescriptor]) -> None:
        if form.synthetic or form.container is None:
            # No form element to submit; Enter in the last filled control
            await page.locator(filled[-1].element.selector).press("Enter")
            return
        form_locator = page.locator(form.container.selector)
        submit_button = form_locator.locator(SUBMIT_BUTTON_SELECTOR).first
        if await submit_button.count() > 0:
            await submit_button.click()
        else:
            await form_locator.evaluate(
                "(f) => (typeof f.requestSubmit === 'function' ? f.requestSubmit() : f.submit())"
            )

    async def process_row(self, profile: str, row: Mapping[str, Any]) -> SubmissionResult:
        """
        Fill and submit one data row.

        Raises:
            FormSubmissionError: when the row has no URL.
            FormNotFoundError: when no form could be detected on the page.
            NoMatchingFieldsError: when no detected form has a field for the row.
        """
        url = self._resolve_url(row)
        data: Dict[str, Any] = dict(row)
        page = await self.context.new_page()
        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.app_config.automation.navigation_timeout_ms,
            )
            logger.info(f"Navigated to: {url}")

            forms = await detect_page_forms(page, self.app_config)
            if not forms:
                if self.app_config.automation.form_fallback_enabled:
                    await self.fallback.handle_form_detection_failure(
                        FallbackContext(page=page, url=url)
                    )
                raise FormNotFoundError(url)

            # The first form that receives at least one value is submitted
            for form in forms:
                filled = await self._fill_form(page, form, data)
                if not filled:
                    continue
                await self._submit(page, form, filled)
                logger.info(f"Form '{form.display_name}' submitted with {len(filled)} field(s)")
                return SubmissionResult(
                    profile=profile,
                    row=row,
                    form=form.display_name,
                    filled=[field.key for field in filled],
                    synthetic=form.synthetic,
                )
            raise NoMatchingFieldsError(url)
        finally:
            await page.close()
