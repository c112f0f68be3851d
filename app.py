import json
import logging
import os

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context

from studio import GenerationResult, ImageStudio
from system_prompt import VALIDATION_MESSAGE

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = Flask(__name__)

studio = ImageStudio()


@app.route("/")
def index():
    """Serve the page. A fresh page has no preview, so the slot is emptied."""
    studio.remove_upload()
    return HTML_PAGE.replace(
        "/*__VALIDATION_MESSAGE__*/",
        json.dumps(VALIDATION_MESSAGE),
    )


@app.route("/api/upload", methods=["POST"])
def upload_image():
    """Store an uploaded image: a FileReader data URL or a multipart file."""
    data = request.get_json(silent=True) or {}
    image_data = data.get("image_data", "")
    upload = request.files.get("image")

    if not image_data and upload is None:
        return jsonify({"error": "No image provided"}), 400

    try:
        if image_data:
            image = studio.upload_data_url(image_data)
        else:
            image = studio.upload(upload.read(), upload.mimetype)
    except ValueError:
        return jsonify({"error": "Invalid image data"}), 400

    return jsonify({"preview": image.data_url, "mime_type": image.mime_type})


@app.route("/api/upload", methods=["DELETE"])
def remove_image():
    studio.remove_upload()
    return jsonify({"removed": True})


@app.route("/api/generate", methods=["POST"])
def generate():
    """Run the generation flow, streaming one JSON line per stage.

    The last line carries the result under "result". Validation failures
    never start the stream and come back as a plain 400.
    """
    data = request.get_json(silent=True) or {}
    prompt = str(data.get("prompt") or "")

    invalid = studio.validate(prompt)
    if invalid is not None:
        return jsonify(invalid.to_dict()), 400

    def events():
        for item in studio.run(prompt):
            if isinstance(item, GenerationResult):
                line = {"result": item.to_dict()}
            else:
                line = item.to_dict()
            yield json.dumps(line) + "\n"

    return Response(stream_with_context(events()), mimetype="application/x-ndjson")


HTML_PAGE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Imagen Studio</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: #0f0f0f;
    color: #e0e0e0;
    min-height: 100vh;
  }

  .page {
    max-width: 960px;
    margin: 0 auto;
    padding: 32px 24px 80px;
    display: flex;
    flex-direction: column;
    gap: 16px;
  }

  h1 {
    font-size: 1.2rem;
    font-weight: 600;
    color: #fff;
  }

  .input-area { position: relative; }

  textarea {
    width: 100%;
    min-height: 140px;
    background: #1a1a1a;
    color: #e0e0e0;
    border: 1px solid #2a2a2a;
    border-radius: 10px;
    padding: 14px;
    padding-bottom: 46px;
    font-size: 0.9rem;
    font-family: inherit;
    resize: vertical;
    outline: none;
    transition: border-color 0.2s;
    line-height: 1.5;
  }
  textarea:focus { border-color: #8b5cf6; }
  textarea::placeholder { color: #555; }

  .input-footer {
    position: absolute;
    bottom: 15px;
    right: 13px;
    display: flex;
    gap: 8px;
    align-items: center;
  }

  .upload-label {
    background: #232323;
    color: #aaa;
    font-size: 0.78rem;
    padding: 7px 14px;
    border-radius: 8px;
    border: 1px solid #333;
    cursor: pointer;
  }
  .upload-label:hover { background: #2e2e2e; color: #e0e0e0; }
  #image-upload { display: none; }

  button {
    background: #8b5cf6;
    color: #fff;
    border: none;
    border-radius: 8px;
    padding: 8px 20px;
    font-size: 0.82rem;
    font-weight: 500;
    cursor: pointer;
    transition: background 0.2s, opacity 0.2s;
  }
  button:hover { background: #7c3aed; }
  button:disabled { opacity: 0.5; cursor: not-allowed; }

  #image-preview-container {
    position: relative;
    width: fit-content;
  }
  #image-preview-container img {
    max-width: 160px;
    max-height: 160px;
    border-radius: 8px;
    border: 1px solid #2a2a2a;
    display: block;
  }
  .remove-image-btn {
    position: absolute;
    top: -8px;
    right: -8px;
    width: 24px;
    height: 24px;
    padding: 0;
    border-radius: 50%;
    background: #232323;
    border: 1px solid #333;
    color: #e0e0e0;
    font-size: 0.9rem;
    line-height: 22px;
  }
  .remove-image-btn:hover { background: #ef4444; }

  #image-gallery {
    display: grid;
    grid-template-columns: repeat(auto-fill, minmax(260px, 1fr));
    gap: 12px;
  }
  #image-gallery img {
    width: 100%;
    border-radius: 10px;
    border: 1px solid #2a2a2a;
  }
  #image-gallery .message {
    grid-column: 1 / -1;
    color: #888;
    font-size: 0.9rem;
  }

  .status {
    font-size: 0.78rem;
    color: #888;
    min-height: 1.2em;
  }
  .status .timer { color: #8b5cf6; font-variant-numeric: tabular-nums; }
</style>
</head>
<body>
<div class="page">
  <h1>Imagen Studio</h1>
  <div class="input-area">
    <textarea id="prompt-input" placeholder="Describe an idea, upload an image, or both..."></textarea>
    <div class="input-footer">
      <label class="upload-label" for="image-upload">Upload image</label>
      <input id="image-upload" type="file" accept="image/*">
      <button id="generate-btn">Generate Images</button>
    </div>
  </div>
  <div id="image-preview-container"></div>
  <div id="status" class="status"></div>
  <div id="image-gallery"></div>
</div>

<script>
  const VALIDATION_MESSAGE = /*__VALIDATION_MESSAGE__*/;
  const BUTTON_LABEL = 'Generate Images';

  const promptInput = document.getElementById('prompt-input');
  const generateBtn = document.getElementById('generate-btn');
  const imageGallery = document.getElementById('image-gallery');
  const imageUploadInput = document.getElementById('image-upload');
  const imagePreviewContainer = document.getElementById('image-preview-container');
  const statusEl = document.getElementById('status');
  let hasUpload = false;

  generateBtn.addEventListener('click', handleGeneration);
  imageUploadInput.addEventListener('change', handleImageUpload);
  promptInput.addEventListener('keydown', e => {
    if (e.key === 'Enter' && (e.metaKey || e.ctrlKey)) { e.preventDefault(); handleGeneration(); }
  });

  function setLoadingState(isLoading, message) {
    generateBtn.disabled = isLoading;
    generateBtn.textContent = isLoading ? (message || BUTTON_LABEL) : BUTTON_LABEL;
  }

  function showMessage(text) {
    imageGallery.innerHTML = '';
    const p = document.createElement('p');
    p.className = 'message';
    p.textContent = text;
    imageGallery.appendChild(p);
  }

  // ── Upload ──
  function handleImageUpload(event) {
    const file = event.target.files && event.target.files[0];
    if (!file) return;

    const reader = new FileReader();
    reader.onloadend = async () => {
      try {
        const res = await fetch('/api/upload', {
          method: 'POST',
          headers: { 'Content-Type': 'application/json' },
          body: JSON.stringify({ image_data: reader.result }),
        });
        const data = await res.json();
        if (!res.ok || data.error) throw new Error(data.error || 'HTTP ' + res.status);
        renderPreview(data.preview);
        hasUpload = true;
      } catch (e) {
        console.error('Upload failed:', e);
        imageUploadInput.value = '';
        alert(e.message);
      }
    };
    reader.readAsDataURL(file);
  }

  function renderPreview(src) {
    imagePreviewContainer.innerHTML = '';
    const img = document.createElement('img');
    img.src = src;

    const removeBtn = document.createElement('button');
    removeBtn.textContent = '×';
    removeBtn.className = 'remove-image-btn';
    removeBtn.onclick = async () => {
      imagePreviewContainer.innerHTML = '';
      imageUploadInput.value = '';
      hasUpload = false;
      await fetch('/api/upload', { method: 'DELETE' });
    };

    imagePreviewContainer.appendChild(img);
    imagePreviewContainer.appendChild(removeBtn);
  }

  // ── Gallery ──
  function renderGallery(result) {
    imageGallery.innerHTML = '';
    if (result.message) {
      showMessage(result.message);
      return;
    }
    result.images.forEach(image => {
      const img = new Image();
      img.src = image.src;
      img.alt = image.alt;
      imageGallery.appendChild(img);
    });
  }

  function handleLine(line) {
    if (line.result) {
      const result = line.result;
      if (result.kind === 'validation_error') {
        imageGallery.innerHTML = '';
        statusEl.textContent = '';
        alert(result.error);
      } else if (result.kind === 'success') {
        console.log('Enhanced prompt:', result.enhanced_prompt);
        renderGallery(result);
        statusEl.innerHTML = 'Completed in <span class="timer">' + result.elapsed + 's</span>';
      } else {
        showMessage(result.error);
        statusEl.textContent = '';
      }
      return;
    }
    if (line.stage !== 'validating') setLoadingState(line.busy, line.status || generateBtn.textContent);
    if (line.message) showMessage(line.message);
  }

  // ── Generation ──
  async function handleGeneration() {
    const textPrompt = promptInput.value;

    if (!textPrompt.trim() && !hasUpload) {
      alert(VALIDATION_MESSAGE);
      return;
    }

    setLoadingState(true, 'Analyzing your idea...');
    statusEl.textContent = '';

    try {
      const res = await fetch('/api/generate', {
        method: 'POST',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify({ prompt: textPrompt }),
      });

      if (!res.ok) {
        const data = await res.json();
        if (data.kind === 'validation_error') {
          alert(data.error);
          return;
        }
        throw new Error(data.error || 'HTTP ' + res.status);
      }

      const reader = res.body.getReader();
      const decoder = new TextDecoder();
      let buffer = '';
      while (true) {
        const { value, done } = await reader.read();
        if (done) break;
        buffer += decoder.decode(value, { stream: true });
        let idx;
        while ((idx = buffer.indexOf('\n')) >= 0) {
          const raw = buffer.slice(0, idx).trim();
          buffer = buffer.slice(idx + 1);
          if (raw) handleLine(JSON.parse(raw));
        }
      }
    } catch (e) {
      console.error('Error during generation process:', e);
      showMessage('Error: Could not generate images. Check the console for details.');
    } finally {
      setLoadingState(false);
    }
  }
</script>
</body>
</html>
"""


if __name__ == "__main__":
    app.run(debug=True, port=int(os.environ.get("PORT", 5000)))
