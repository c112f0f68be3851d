"""Prompt enhancement and image generation flow behind the studio page.

A generation runs two remote calls in order: a Gemini text model rewrites
the user's text and/or uploaded image into one descriptive paragraph, and
an Imagen model turns that paragraph into a few square JPEG images. The
`ImageStudio` object owns the single uploaded-image slot and sequences the
calls; the module-level functions are the thin SDK wrappers it uses.
"""

import base64
import io
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from PIL import Image
from google import genai
from google.genai import types

from system_prompt import (
    ANALYZING_MESSAGE,
    ANALYZING_STATUS,
    ENHANCE_PROMPT,
    ERROR_MESSAGE,
    GENERATING_MESSAGE,
    GENERATING_STATUS,
    NO_IMAGES_MESSAGE,
    VALIDATION_MESSAGE,
)

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "imagen-3.0-generate-002"

IMAGE_COUNT = 3
ASPECT_RATIO = "1:1"
OUTPUT_MIME_TYPE = "image/jpeg"
FALLBACK_UPLOAD_MIME_TYPE = "image/jpeg"
ALT_PROMPT_LENGTH = 50


class StudioError(Exception):
    """Base class for errors raised by the studio flow."""


class EmptyResponseError(StudioError):
    """The text model answered without any text."""


class Stage(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    ENHANCING = "enhancing"
    GENERATING_IMAGES = "generating_images"
    RENDERING = "rendering"
    ERROR = "error"


class ResultKind(str, Enum):
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    REMOTE_ERROR = "remote_error"


@dataclass
class UploadedImage:
    data: str
    mime_type: str = FALLBACK_UPLOAD_MIME_TYPE

    @property
    def data_url(self):
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass
class GalleryImage:
    src: str
    alt: str

    def to_dict(self):
        return {"src": self.src, "alt": self.alt}


@dataclass
class StageUpdate:
    stage: Stage
    status: str | None = None
    message: str | None = None
    busy: bool = False

    def to_dict(self):
        return {
            "stage": self.stage.value,
            "status": self.status,
            "message": self.message,
            "busy": self.busy,
        }


@dataclass
class GenerationResult:
    """Outcome of one generation flow.

    `message` is what the gallery shows instead of images: the validation
    alert, the "no images" notice or the generic error line. `error` keeps
    the exception behind a remote failure for callers that need it; it
    is never sent to the page.
    """

    kind: ResultKind
    message: str | None = None
    images: list[GalleryImage] = field(default_factory=list)
    enhanced_prompt: str | None = None
    elapsed: float = 0.0
    error: Exception | None = None

    @property
    def ok(self):
        return self.kind is ResultKind.SUCCESS

    def to_dict(self):
        if not self.ok:
            return {"kind": self.kind.value, "error": self.message, "elapsed": self.elapsed}
        return {
            "kind": self.kind.value,
            "images": [img.to_dict() for img in self.images],
            "message": self.message,
            "enhanced_prompt": self.enhanced_prompt,
            "elapsed": self.elapsed,
        }


def create_client():
    """Build the Gemini API client from GEMINI_API_KEY.

    HTTP_TIMEOUT_MS sets a transport timeout; by default there is none.
    """
    timeout = os.environ.get("HTTP_TIMEOUT_MS")
    return genai.Client(
        api_key=os.environ["GEMINI_API_KEY"],
        http_options=types.HttpOptions(timeout=int(timeout) if timeout else None),
    )


def sniff_mime_type(raw_bytes, declared=None):
    """Best guess at the MIME type of uploaded bytes.

    Pillow's format detection wins, then the type the browser declared,
    then JPEG.
    """
    try:
        with Image.open(io.BytesIO(raw_bytes)) as img:
            fmt = img.format
    except OSError:
        fmt = None

    if fmt and fmt in Image.MIME:
        return Image.MIME[fmt]
    if declared and declared.startswith("image/"):
        return declared
    return FALLBACK_UPLOAD_MIME_TYPE


def enhance_prompt(client, model, text_prompt, image=None):
    """Ask the text model for a single descriptive image prompt.

    The image part, when present, goes before the text part. Errors from the
    SDK are not caught here.
    """
    parts = []
    if image is not None:
        parts.append(
            types.Part.from_bytes(
                data=base64.b64decode(image.data),
                mime_type=image.mime_type,
            )
        )
    if text_prompt:
        parts.append(types.Part.from_text(text=text_prompt))

    response = client.models.generate_content(
        model=model,
        contents=types.Content(role="user", parts=parts),
        config=types.GenerateContentConfig(system_instruction=ENHANCE_PROMPT),
    )

    text = response.text
    if not text:
        raise EmptyResponseError(f"{model} returned no text")

    logger.info("Enhanced prompt by %s: %s", model, text)
    return text


def generate_images(client, model, prompt):
    """Generate IMAGE_COUNT square JPEGs for `prompt`.

    Returns one base64 string per result, or None for a result without
    image bytes. An empty list means the service declined the prompt.
    """
    response = client.models.generate_images(
        model=model,
        prompt=prompt,
        config=types.GenerateImagesConfig(
            number_of_images=IMAGE_COUNT,
            aspect_ratio=ASPECT_RATIO,
            output_mime_type=OUTPUT_MIME_TYPE,
        ),
    )

    encoded = []
    for generated in response.generated_images or []:
        image = generated.image
        if image is not None and image.image_bytes:
            encoded.append(base64.b64encode(image.image_bytes).decode("utf-8"))
        else:
            encoded.append(None)

    logger.info(
        "%s returned %d of %d images",
        model, sum(1 for data in encoded if data), IMAGE_COUNT,
    )
    return encoded


def render_gallery(prompt, images):
    excerpt = prompt[:ALT_PROMPT_LENGTH]
    gallery = []
    for index, data in enumerate(images, 1):
        if not data:
            continue
        gallery.append(GalleryImage(
            src=f"data:{OUTPUT_MIME_TYPE};base64,{data}",
            alt=f"{excerpt}... - Image {index}",
        ))
    return gallery


class ImageStudio:
    """Holds the uploaded image and runs the enhance-then-generate flow.

    The SDK client is created lazily, so a missing API key only surfaces
    when the first generation is attempted. `busy` is true while any flow
    is between validation and its result; every StageUpdate carries it so
    the page can drive the generate button from it.
    """

    def __init__(self, client=None, text_model=None, image_model=None):
        self._client = client
        self.text_model = text_model or os.environ.get("TEXT_MODEL", DEFAULT_TEXT_MODEL)
        self.image_model = image_model or os.environ.get("IMAGE_MODEL", DEFAULT_IMAGE_MODEL)
        self.uploaded_image = None
        self._lock = threading.Lock()
        self._running = 0

    @property
    def busy(self):
        with self._lock:
            return self._running > 0

    def _start(self):
        with self._lock:
            self._running += 1

    def _finish(self):
        with self._lock:
            self._running -= 1

    @property
    def client(self):
        if self._client is None:
            self._client = create_client()
        return self._client

    # -- upload slot --

    def upload(self, raw_bytes, declared_mime_type=None):
        self.uploaded_image = UploadedImage(
            data=base64.b64encode(raw_bytes).decode("utf-8"),
            mime_type=sniff_mime_type(raw_bytes, declared_mime_type),
        )
        return self.uploaded_image

    def upload_data_url(self, data_url):
        """Store the payload of a `data:<mime>;base64,<payload>` URL.

        Raises ValueError when the URL has no payload or it is not base64.
        """
        header, sep, payload = data_url.partition(",")
        if not sep or not payload:
            raise ValueError("Image data is not a data URL")
        raw_bytes = base64.b64decode(payload, validate=True)

        declared = None
        if header.startswith("data:"):
            declared = header[len("data:"):].split(";")[0]

        self.uploaded_image = UploadedImage(
            data=payload,
            mime_type=sniff_mime_type(raw_bytes, declared),
        )
        return self.uploaded_image

    def remove_upload(self):
        self.uploaded_image = None

    # -- generation --

    def validate(self, text_prompt):
        if not text_prompt.strip() and self.uploaded_image is None:
            return GenerationResult(
                kind=ResultKind.VALIDATION_ERROR, message=VALIDATION_MESSAGE,
            )
        return None

    def _enter(self, stage, status=None, message=None):
        return StageUpdate(stage, status, message, busy=self.busy)

    def run(self, text_prompt):
        """Yield a StageUpdate for each stage, then the GenerationResult.

        Nothing remote is called when validation fails. Any failure of either
        remote call ends the flow with the generic error message; the image
        call is never made when enhancement fails.
        """
        start = time.time()
        yield self._enter(Stage.VALIDATING)

        result = self.validate(text_prompt)
        if result is not None:
            yield self._enter(Stage.IDLE)
            yield result
            return

        image = self.uploaded_image
        self._start()
        try:
            yield self._enter(Stage.ENHANCING, ANALYZING_STATUS, ANALYZING_MESSAGE)
            enhanced = enhance_prompt(self.client, self.text_model, text_prompt, image)

            yield self._enter(Stage.GENERATING_IMAGES, GENERATING_STATUS, GENERATING_MESSAGE)
            images = generate_images(self.client, self.image_model, enhanced)

            yield self._enter(Stage.RENDERING)
            gallery = render_gallery(text_prompt if text_prompt.strip() else enhanced, images)
            result = GenerationResult(
                kind=ResultKind.SUCCESS,
                message=None if gallery else NO_IMAGES_MESSAGE,
                images=gallery,
                enhanced_prompt=enhanced,
            )
        except Exception as e:
            logger.exception("Error during generation process")
            yield self._enter(Stage.ERROR, message=ERROR_MESSAGE)
            result = GenerationResult(
                kind=ResultKind.REMOTE_ERROR, message=ERROR_MESSAGE, error=e,
            )
        finally:
            self._finish()

        result.elapsed = round(time.time() - start, 1)
        yield self._enter(Stage.IDLE)
        yield result

    def generate(self, text_prompt, on_status=None):
        """Run the whole flow and return its GenerationResult.

        `on_status` is called with every StageUpdate along the way.
        """
        for item in self.run(text_prompt):
            if isinstance(item, GenerationResult):
                return item
            if on_status is not None:
                on_status(item)
        raise StudioError("generation flow ended without a result")
