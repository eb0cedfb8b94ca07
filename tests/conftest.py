import os
import sys
from io import BytesIO

# Settings must be in place before config is imported
os.environ["AUTH_USERNAME"] = "studio"
os.environ["AUTH_PASSWORD"] = "s3cret-pass"
os.environ["REPLICATE_API_TOKEN"] = "r8_test_token"
os.environ["REPLICATE_API_BASE"] = "https://api.replicate.com/v1"
os.environ["REPLICATE_POLL_INTERVAL_SECONDS"] = "0"
os.environ["GENERATION_TIMEOUT_SECONDS"] = "5"
os.environ["DOWNLOAD_DELAY_SECONDS"] = "0"
os.environ["IMAGE_REFERENCE_MODE"] = "inline"

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from services.errors import GenerationFailedError


def make_image(color, fmt="PNG", size=(24, 32)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeGenerator:
    """Stands in for generate_tryon; fails on the call numbers listed in fail_on"""

    def __init__(self, fail_on=()):
        self.calls = []
        self.fail_on = set(fail_on)

    async def __call__(self, model_ref, garment_ref):
        self.calls.append((model_ref, garment_ref))
        n = len(self.calls)
        if n in self.fail_on:
            raise GenerationFailedError("upstream exploded")
        return f"https://replicate.delivery/out/result-{n}.jpg"


@pytest.fixture
def png_red():
    return make_image("red")


@pytest.fixture
def png_blue():
    return make_image("blue")


@pytest.fixture
def jpeg_green():
    return make_image("green", fmt="JPEG")


@pytest.fixture
def fake_generate(monkeypatch):
    fake = FakeGenerator()
    monkeypatch.setattr("services.batch_service.generate_tryon", fake)
    monkeypatch.setattr("main.generate_tryon", fake)
    return fake


@pytest.fixture
def client():
    import main
    return TestClient(main.app)


@pytest.fixture
def auth_client(client):
    response = client.post("/api/auth", json={"username": "studio", "password": "s3cret-pass"})
    assert response.status_code == 200
    return client
