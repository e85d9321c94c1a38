"""
Recovery steps when no form can be detected on a page.

The handler gives an optional CAPTCHA solver a chance to clear the page, then
walks ``document.forms`` inside the page and submits each one with a short
focus/blur pass over its inputs. Every step logs its outcome and none of
them raises into the caller.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from automation.models import FallbackContext
from config import config
from core.logger import get_structured_logger

logger = logging.getLogger(__name__)

QUERY_FORMS_SCRIPT = """
() => Array.from(document.forms || []).map((f, index) => ({
    index,
    id: f.id || null,
    name: f.getAttribute('name') || null,
    action: f.getAttribute('action') || null,
}))
"""

INTERACT_SCRIPT = """
async (formIndex) => {
    const delay = (ms) => new Promise((resolve) => setTimeout(resolve, ms));
    const form = Array.from(document.forms)[formIndex];
    if (!form) return false;
    for (const el of form.querySelectorAll('input, textarea, select')) {
        if (typeof el.focus === 'function') el.focus();
        await delay(120 + Math.random() * 180);
        if (typeof el.blur === 'function') el.blur();
    }
    if (typeof form.requestSubmit === 'function') {
        form.requestSubmit();
    } else {
        form.dispatchEvent(new Event('submit', {bubbles: true, cancelable: true}));
    }
    return true;
}
"""


class FallbackHandler:
    def __init__(
        self,
        automation_config=None,
        captcha_solver: Optional[Callable[[Any], Awaitable[bool]]] = None,
    ):
        """
        Args:
            automation_config: ``AutomationConfig`` section; the global one when omitted.
            captcha_solver: Optional coroutine taking the page and returning True
                when the CAPTCHA was solved. A context-level solver takes precedence.
        """
        self.automation_config = automation_config or config.automation
        self.captcha_solver = captcha_solver
        self.logger = get_structured_logger(__name__)

    async def handle_form_detection_failure(self, context: FallbackContext) -> int:
        """
        Try to recover a page on which no form was detected.

        Returns:
            Number of alternative forms that were interacted with.
        """
        self.logger.warning("form_detection_failure", url=context.url)
        page = context.page
        if page is None:
            return 0

        await self.invoke_captcha_solver(context)

        forms = await self.query_alternative_forms(page)
        for form_meta in forms:
            await self.simulate_alternative_interaction(page, form_meta["index"])
        return len(forms)

    async def invoke_captcha_solver(self, context: FallbackContext) -> bool:
        if not self.automation_config.captcha_solver_enabled:
            return False
        if context.solve_captcha is not None:
            solver = context.solve_captcha
        elif self.captcha_solver is not None:
            async def solver():
                return await self.captcha_solver(context.page)
        else:
            return False

        try:
            result = await solver()
        except Exception as e:
            self.logger.error("captcha_solver_error", url=context.url, error=str(e))
            return False
        self.logger.info("captcha_solver_attempt", url=context.url, success=result is True)
        return result is True

    async def query_alternative_forms(self, page) -> List[Dict[str, Any]]:
        try:
            forms = await page.evaluate(QUERY_FORMS_SCRIPT)
        except Exception as e:
            self.logger.error("alternative_forms_query_error", error=str(e))
            return []
        logger.debug(f"Found {len(forms)} alternative form(s) in document.forms")
        return forms

    async def simulate_alternative_interaction(self, page, index: int) -> bool:
        try:
            submitted = await page.evaluate(INTERACT_SCRIPT, index)
        except Exception as e:
            self.logger.error("alternative_interaction_error", form_index=index, error=str(e))
            return False
        self.logger.info("alternative_interaction", form_index=index, submitted=bool(submitted))
        return bool(submitted)
