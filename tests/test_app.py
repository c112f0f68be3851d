import base64
import json

import pytest

import app as app_module
from system_prompt import ERROR_MESSAGE, NO_IMAGES_MESSAGE, VALIDATION_MESSAGE


@pytest.fixture
def client(monkeypatch, studio):
    monkeypatch.setattr(app_module, "studio", studio)
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as c:
        yield c


def read_lines(resp):
    return [json.loads(line) for line in resp.get_data(as_text=True).splitlines() if line]


def test_index_serves_page(client):
    resp = client.get("/")

    assert resp.status_code == 200
    page = resp.get_data(as_text=True)
    for element_id in ("prompt-input", "generate-btn", "image-gallery",
                       "image-upload", "image-preview-container"):
        assert f'id="{element_id}"' in page
    assert json.dumps(VALIDATION_MESSAGE) in page
    assert "/*__VALIDATION_MESSAGE__*/" not in page


def test_generate_rejects_blank_input(client, models):
    resp = client.post("/api/generate", json={"prompt": "   "})

    assert resp.status_code == 400
    assert resp.get_json() == {
        "kind": "validation_error",
        "error": VALIDATION_MESSAGE,
        "elapsed": 0.0,
    }
    assert models.calls == []


def test_generate_streams_stages_then_result(client, models):
    resp = client.post("/api/generate", json={"prompt": "a cat"})

    assert resp.status_code == 200
    assert resp.mimetype == "application/x-ndjson"
    lines = read_lines(resp)

    stages = [line["stage"] for line in lines if "stage" in line]
    assert stages == ["validating", "enhancing", "generating_images", "rendering", "idle"]

    result = lines[-1]["result"]
    assert result["kind"] == "success"
    assert result["enhanced_prompt"] == "X"
    assert [img["alt"] for img in result["images"]] == [
        "a cat... - Image 1",
        "a cat... - Image 2",
        "a cat... - Image 3",
    ]
    assert models.called("generate_images")[0]["prompt"] == "X"


def test_generate_with_no_images(client, models):
    models.images = []

    result = read_lines(client.post("/api/generate", json={"prompt": "a cat"}))[-1]["result"]

    assert result["images"] == []
    assert result["message"] == NO_IMAGES_MESSAGE


def test_generate_remote_error(client, models, studio):
    models.text_error = RuntimeError("upstream exploded")

    lines = read_lines(client.post("/api/generate", json={"prompt": "a cat"}))

    result = lines[-1]["result"]
    assert result["kind"] == "remote_error"
    assert result["error"] == ERROR_MESSAGE
    assert "upstream exploded" not in json.dumps(lines)
    assert not studio.busy


def test_upload_data_url_then_generate_with_image_only(client, models, studio, png_bytes):
    data_url = "data:image/png;base64," + base64.b64encode(png_bytes).decode()

    resp = client.post("/api/upload", json={"image_data": data_url})

    assert resp.status_code == 200
    assert resp.get_json()["preview"] == data_url
    assert studio.uploaded_image is not None

    lines = read_lines(client.post("/api/generate", json={"prompt": ""}))

    assert lines[-1]["result"]["kind"] == "success"
    parts = models.called("generate_content")[0]["contents"].parts
    assert parts[0].inline_data.mime_type == "image/png"


def test_upload_multipart(client, studio, png_bytes):
    import io

    resp = client.post(
        "/api/upload",
        data={"image": (io.BytesIO(png_bytes), "pic.png", "image/png")},
        content_type="multipart/form-data",
    )

    assert resp.status_code == 200
    assert resp.get_json()["mime_type"] == "image/png"
    assert studio.uploaded_image.data == base64.b64encode(png_bytes).decode()


def test_upload_without_image(client):
    resp = client.post("/api/upload", json={})

    assert resp.status_code == 400
    assert resp.get_json() == {"error": "No image provided"}


def test_upload_invalid_data(client, studio):
    resp = client.post("/api/upload", json={"image_data": "data:image/png;base64,@@@"})

    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Invalid image data"}
    assert studio.uploaded_image is None


def test_remove_upload(client, studio, png_bytes):
    studio.upload(png_bytes)

    resp = client.delete("/api/upload")

    assert resp.status_code == 200
    assert studio.uploaded_image is None

    resp = client.post("/api/generate", json={"prompt": ""})
    assert resp.status_code == 400


def test_serving_the_page_clears_a_stale_upload(client, models, studio, png_bytes):
    data_url = "data:image/png;base64," + base64.b64encode(png_bytes).decode()
    client.post("/api/upload", json={"image_data": data_url})

    client.get("/")
    assert studio.uploaded_image is None

    read_lines(client.post("/api/generate", json={"prompt": "a cat"}))

    parts = models.called("generate_content")[0]["contents"].parts
    assert len(parts) == 1
    assert parts[0].text == "a cat"


@pytest.mark.parametrize("prompt", [None, 0, False])
def test_generate_with_non_string_blank_prompt_is_a_validation_error(client, models, prompt):
    resp = client.post("/api/generate", json={"prompt": prompt})

    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "validation_error"
    assert models.calls == []


def test_generate_with_non_string_prompt_is_stringified(client, models):
    lines = read_lines(client.post("/api/generate", json={"prompt": 42}))

    assert lines[-1]["result"]["kind"] == "success"
    assert models.called("generate_content")[0]["contents"].parts[0].text == "42"


def test_stream_lines_carry_button_state(client):
    lines = read_lines(client.post("/api/generate", json={"prompt": "a cat"}))

    busy = [(line["stage"], line["busy"]) for line in lines if "stage" in line]
    assert busy == [
        ("validating", False),
        ("enhancing", True),
        ("generating_images", True),
        ("rendering", True),
        ("idle", False),
    ]


def test_stream_re_enables_button_after_remote_error(client, models):
    models.image_error = RuntimeError("boom")

    lines = read_lines(client.post("/api/generate", json={"prompt": "a cat"}))

    stages = [line for line in lines if "stage" in line]
    assert stages[-1] == {"stage": "idle", "status": None, "message": None, "busy": False}
    assert lines[-1]["result"]["kind"] == "remote_error"


def test_page_script_follows_stream_state(client):
    page = client.get("/").get_data(as_text=True)

    assert "setLoadingState(line.busy" in page
    assert "result.kind === 'validation_error'" in page
