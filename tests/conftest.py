import pytest


@pytest.fixture
def anyio_backend() -> str:
    # The client and server code is built on stdlib asyncio (see DESIGN.md).
    return "asyncio"
