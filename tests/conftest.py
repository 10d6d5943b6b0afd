import pytest


class FakeClock:
    """Manually advanced clock returning integer milliseconds."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
