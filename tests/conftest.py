from typing import Dict, List, Tuple, Union

import pytest

from app_attest.challenge import ChallengeClient
from app_attest.errors import AttestationError, KeyAssertionError, UnsupportedDeviceError
from app_attest.flow import AttestationFlow
from app_attest.key_store import KeyStore
from app_attest.primitive import KeyAttestationPrimitive
from app_attest.verifier import VerifierClient

BASE_URL = "https://verifier.test"
APP_ID = "A1B2C3D4E5.com.example.appattest"


class DummyResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


Reply = Union[DummyResponse, Exception]


class FakeSession:
    """Stands in for requests.Session; replies are scripted per (method, path)."""

    def __init__(self, routes: Dict[Tuple[str, str], Union[Reply, List[Reply]]] = None):
        self.routes = routes or {}
        self.calls = []

    def get(self, url, timeout=None, **kwargs):
        return self._dispatch("GET", url, None, timeout)

    def post(self, url, json=None, timeout=None, **kwargs):
        return self._dispatch("POST", url, json, timeout)

    def paths(self, method=None):
        return [path for (m, path, _, _) in self.calls if method is None or m == method]

    def _dispatch(self, method, url, body, timeout):
        assert url.startswith(BASE_URL), url
        path = url[len(BASE_URL):]
        self.calls.append((method, path, body, timeout))

        reply = self.routes.get((method, path))
        if reply is None:
            raise AssertionError(f"Unexpected request {method} {path}")
        if isinstance(reply, list):
            reply = reply.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakePrimitive(KeyAttestationPrimitive):
    """In-memory attestation capability that records every call."""

    def __init__(self, supported: bool = True, key_id: str = "abc123"):
        self.supported = supported
        self.key_id = key_id
        self.enrolled = set()
        self.calls = []

    def is_supported(self) -> bool:
        self.calls.append(("is_supported",))
        return self.supported

    def generate_key(self) -> str:
        self.calls.append(("generate_key",))
        if not self.supported:
            raise UnsupportedDeviceError()
        self.enrolled.add(self.key_id)
        return self.key_id

    def attest_key(self, identifier: str, digest: bytes) -> bytes:
        self.calls.append(("attest_key", identifier, digest))
        if identifier not in self.enrolled:
            raise AttestationError()
        return b"attestation:" + digest

    def generate_assertion(self, identifier: str, digest: bytes) -> bytes:
        self.calls.append(("generate_assertion", identifier, digest))
        if identifier not in self.enrolled:
            raise KeyAssertionError()
        return b"assertion:" + digest

    def names(self):
        return [call[0] for call in self.calls]


def challenge_reply(value: str) -> DummyResponse:
    return DummyResponse({"challenge": value})


@pytest.fixture()
def session():
    return FakeSession()


@pytest.fixture()
def primitive():
    return FakePrimitive()


@pytest.fixture()
def key_store(tmp_path):
    return KeyStore(str(tmp_path / "defaults.json"))


@pytest.fixture()
def make_flow(session, primitive, key_store):
    def _make(**overrides):
        return AttestationFlow(
            primitive=overrides.get("primitive", primitive),
            challenge_client=ChallengeClient(BASE_URL, overrides.get("session", session), timeout=10.0),
            verifier_client=VerifierClient(BASE_URL, overrides.get("session", session), timeout=10.0),
            key_store=overrides.get("key_store", key_store),
            app_id=APP_ID,
            principal="foo",
        )

    return _make
