"""Shared fixtures: in-memory providers and a controllable clock."""
import asyncio

import pytest

from vault_fetchkit.secrets.domains.errors import NotFoundError


class FakeProvider:
    """Async provider backed by a dict that records every call.

    ``errors`` maps either (endpoint, name) or an endpoint to the exception
    to raise. When ``gate`` is set, each fetch blocks until it is released.
    """

    def __init__(self, secrets=None, errors=None, gate=None):
        self.secrets = dict(secrets or {})
        self.errors = dict(errors or {})
        self.gate = gate
        self.calls = []
        self.cancelled = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = asyncio.Event()

    async def fetch(self, endpoint_key, secret_name, credential_ref):
        self.calls.append((endpoint_key, secret_name, credential_ref))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            error = self.errors.get((endpoint_key, secret_name)) or self.errors.get(endpoint_key)
            if error is not None:
                raise error
            if (endpoint_key, secret_name) not in self.secrets:
                raise NotFoundError(f"{secret_name} missing", endpoint_key, secret_name)
            return self.secrets[(endpoint_key, secret_name)]
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def make_provider():
    """Factory for FakeProvider; call it inside the test so events bind to the running loop."""
    return FakeProvider


@pytest.fixture
def clock():
    return FakeClock()
