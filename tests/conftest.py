import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="govlink_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# Rate limits use the in-process bucket so tests do not need a Redis server
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from govlink.service.runtime import reset_runtime_for_tests  # noqa: E402

TEST_PASSWORD = "TestPassword123!"


def _clear_persisted_principals() -> None:
    state = Path(os.environ["SHARED_FS_ROOT"]) / "state" / "principals.json"
    if state.exists():
        state.unlink()


@pytest.fixture(autouse=True)
def reset_runtime_state():
    _clear_persisted_principals()
    runtime = reset_runtime_for_tests()
    yield runtime
    _clear_persisted_principals()
    reset_runtime_for_tests()


@pytest.fixture
def runtime(reset_runtime_state):
    return reset_runtime_state


@pytest.fixture
def make_principal(runtime):
    """Create a principal with TEST_PASSWORD in the given partition."""

    def _make(
        partition: str = "user",
        email: str = "citizen@example.lk",
        *,
        role=None,
        status: str = "ACTIVE",
        email_verified: bool = True,
        profile=None,
        password: str = TEST_PASSWORD,
    ):
        from govlink.service.partitions import get_partition

        config = get_partition(partition)
        digest, algo = runtime.credentials.hash_password(password)
        return runtime.store.create_principal(
            partition,
            email,
            password_hash=digest,
            password_algo=algo,
            role=role or config.default_role,
            status=status,
            email_verified=email_verified,
            profile=profile,
        )

    return _make


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
