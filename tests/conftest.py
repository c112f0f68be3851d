import io
from types import SimpleNamespace

import pytest
from PIL import Image

from studio import ImageStudio


class FakeModels:
    """Stands in for `client.models`, recording every call it receives."""

    def __init__(self, text="X", images=(b"one", b"two", b"three"),
                 text_error=None, image_error=None):
        self.text = text
        self.images = list(images)
        self.text_error = text_error
        self.image_error = image_error
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(("generate_content", kwargs))
        if self.text_error is not None:
            raise self.text_error
        return SimpleNamespace(text=self.text)

    def generate_images(self, **kwargs):
        self.calls.append(("generate_images", kwargs))
        if self.image_error is not None:
            raise self.image_error
        return SimpleNamespace(generated_images=[
            SimpleNamespace(image=None if data is None else SimpleNamespace(image_bytes=data))
            for data in self.images
        ])

    def called(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]


@pytest.fixture
def models():
    return FakeModels()


@pytest.fixture
def studio(models):
    return ImageStudio(
        client=SimpleNamespace(models=models),
        text_model="text-model",
        image_model="image-model",
    )


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), "red").save(buf, format="PNG")
    return buf.getvalue()
