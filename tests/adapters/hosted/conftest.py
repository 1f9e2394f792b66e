from __future__ import annotations

import pytest

from shiftdesk.config import HostedBackendConfig  # noqa: TC001
from tests.helpers.hosted import make_backend_config


@pytest.fixture
def backend_config() -> HostedBackendConfig:
    return make_backend_config()
