"""Shared fixtures: principals, stores and generated receipt images."""

import base64
import random
from io import BytesIO

import pytest
from PIL import Image

from calcpro.services.storage import InMemorySessionStore, StaticPrincipalProvider


def make_image_bytes(width: int, height: int, fmt: str = "PNG", noise: bool = False, mode: str = "RGB") -> bytes:
    """Encode a generated image (gradient, or random noise) to bytes."""
    if noise:
        rng = random.Random(1234)
        channels = len(mode)
        img = Image.frombytes(mode, (width, height), rng.randbytes(width * height * channels))
    else:
        img = Image.linear_gradient("L").resize((width, height)).convert(mode)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def to_data_uri(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


@pytest.fixture
def principals():
    return StaticPrincipalProvider("user-1")


@pytest.fixture
def store(principals):
    return InMemorySessionStore(principals)


@pytest.fixture
def small_png() -> bytes:
    return make_image_bytes(64, 48)
