import pytest

from core.bot import CommandBot
from core.models import CancellationToken
from fakes import FakeTransport


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def transport(token: CancellationToken) -> FakeTransport:
    return FakeTransport(token=token)


@pytest.fixture
def bot(transport: FakeTransport) -> CommandBot:
    return CommandBot(transport=transport)
