import sys
from pathlib import Path

import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stack_e2e.config import HarnessConfig
from stack_e2e.mock_stack import MockServer, MockStack, create_gallery_app, credential_env
from stack_e2e.playwright_client import PlaywrightClient
from stack_e2e.services import ServiceRegistry
from stack_e2e.session_manager import SessionManager


@pytest.fixture()
def evidence_dir(tmp_path):
    return tmp_path / "screenshots"


@pytest.fixture()
def harness_config(evidence_dir):
    """Configuration with every mock credential set, writing into tmp_path."""
    environ = credential_env()
    environ.update({
        "NAS_HOST": "127.0.0.1",
        "SCREENSHOT_DIR": str(evidence_dir),
        "PLAYWRIGHT_HEADLESS": "true",
    })
    return HarnessConfig(environ=environ)


@pytest.fixture()
def empty_config(evidence_dir):
    """Configuration with no credentials at all."""
    return HarnessConfig(environ={"NAS_HOST": "127.0.0.1", "SCREENSHOT_DIR": str(evidence_dir)})


# ============================================================================
# Mock services
# ============================================================================

@pytest.fixture(scope="function")
def mock_stack():
    """One running mock server per service."""
    with MockStack() as stack:
        yield stack


@pytest.fixture(scope="function")
def gallery_server():
    """Pages for exercising the stabilization steps."""
    server = MockServer(create_gallery_app()).start()
    yield server
    server.stop()


@pytest.fixture()
def registry(mock_stack):
    return ServiceRegistry("127.0.0.1", ports=mock_stack.ports)


# ============================================================================
# Browser fixtures
# ============================================================================

@pytest_asyncio.fixture()
async def playwright_client(harness_config):
    """Headless Chromium; tests needing it are skipped when it cannot launch."""
    client = PlaywrightClient(
        headless=harness_config.playwright_headless,
        timeout=harness_config.default_timeout_ms,
        viewport=harness_config.viewport,
    )
    try:
        await client.connect()
    except Exception as exc:
        pytest.skip(f"Chromium not available - install with: playwright install chromium ({exc})")

    yield client

    await client.close()


@pytest_asyncio.fixture()
async def session_manager(playwright_client, registry):
    """Isolated per-service sessions against the mock stack."""
    return SessionManager(playwright_client, registry)


@pytest_asyncio.fixture()
async def page(playwright_client):
    """A bare page in its own context, for tests that do not need a service."""
    context = await playwright_client.new_context()
    page = await context.new_page()
    yield page
    await context.close()
