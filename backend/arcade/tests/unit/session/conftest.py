import pytest

from arcade.session.controller import SessionController
from arcade.tests.helpers.session import MANUAL_TIMINGS


@pytest.fixture
async def make_controller(gateway, scoring, host):
    """Build controllers on the shared gateway; every one is torn down after the test."""
    controllers: list[SessionController] = []

    def factory(**kwargs) -> SessionController:
        kwargs.setdefault("timings", MANUAL_TIMINGS)
        controller = SessionController(gateway, scoring, host, **kwargs)
        controllers.append(controller)
        return controller

    yield factory
    for controller in controllers:
        controller.teardown()
        await controller.wait_for_background()
