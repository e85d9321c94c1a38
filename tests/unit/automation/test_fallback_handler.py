import pytest
from unittest.mock import AsyncMock, MagicMock, call

from automation.fallback import INTERACT_SCRIPT, QUERY_FORMS_SCRIPT, FallbackHandler
from automation.models import FallbackContext


@pytest.fixture
def page():
    page = MagicMock()
    page.evaluate = AsyncMock()
    return page


@pytest.mark.asyncio
async def test_without_page_nothing_is_attempted(app_config):
    solver = AsyncMock(return_value=True)
    handler = FallbackHandler(app_config.automation, captcha_solver=solver)

    assert await handler.handle_form_detection_failure(FallbackContext(url="https://example.com")) == 0
    solver.assert_not_awaited()


@pytest.mark.asyncio
async def test_alternative_forms_are_each_submitted(app_config, page):
    page.evaluate.side_effect = [
        [{"index": 0, "id": "a", "name": None, "action": None}, {"index": 1, "id": None, "name": "b", "action": "/b"}],
        True,
        True,
    ]
    handler = FallbackHandler(app_config.automation)

    interacted = await handler.handle_form_detection_failure(FallbackContext(page=page, url="https://example.com"))

    assert interacted == 2
    assert page.evaluate.await_args_list == [
        call(QUERY_FORMS_SCRIPT),
        call(INTERACT_SCRIPT, 0),
        call(INTERACT_SCRIPT, 1),
    ]


@pytest.mark.asyncio
async def test_captcha_solver_runs_before_form_query(app_config, page):
    order = []
    page.evaluate.side_effect = lambda *args: order.append("query") or []

    async def solver(p):
        order.append("solve")
        return True

    handler = FallbackHandler(app_config.automation, captcha_solver=solver)

    await handler.handle_form_detection_failure(FallbackContext(page=page))

    assert order == ["solve", "query"]


@pytest.mark.asyncio
async def test_context_solver_takes_precedence(app_config, page):
    handler_solver = AsyncMock(return_value=True)
    context_solver = AsyncMock(return_value=False)
    handler = FallbackHandler(app_config.automation, captcha_solver=handler_solver)

    solved = await handler.invoke_captcha_solver(FallbackContext(page=page, solve_captcha=context_solver))

    assert solved is False
    context_solver.assert_awaited_once_with()
    handler_solver.assert_not_awaited()


@pytest.mark.asyncio
async def test_captcha_solver_outcomes(app_config, page):
    handler = FallbackHandler(app_config.automation, captcha_solver=AsyncMock(side_effect=RuntimeError("service down")))
    assert await handler.invoke_captcha_solver(FallbackContext(page=page)) is False

    handler = FallbackHandler(app_config.automation, captcha_solver=AsyncMock(return_value=True))
    assert await handler.invoke_captcha_solver(FallbackContext(page=page)) is True

    assert await FallbackHandler(app_config.automation).invoke_captcha_solver(FallbackContext(page=page)) is False


@pytest.mark.asyncio
async def test_captcha_solver_can_be_disabled(app_config, page):
    app_config.automation.captcha_solver_enabled = False
    solver = AsyncMock(return_value=True)
    handler = FallbackHandler(app_config.automation, captcha_solver=solver)

    assert await handler.invoke_captcha_solver(FallbackContext(page=page)) is False
    solver.assert_not_awaited()


@pytest.mark.asyncio
async def test_page_errors_are_contained(app_config, page):
    page.evaluate.side_effect = RuntimeError("execution context destroyed")
    handler = FallbackHandler(app_config.automation)

    assert await handler.handle_form_detection_failure(FallbackContext(page=page)) == 0
    assert await handler.simulate_alternative_interaction(page, 0) is False
