import io
import json
import logging
import threading
import time
import uuid
from collections import OrderedDict

from flask import Flask, jsonify, request, send_file, session

import config
from codec import as_png, from_data_url
from edit_client import EditClient
from editor import EditorSession, Outcome, SessionState
from suggestions import PROMPT_PLACEHOLDER, READ_FAILURE, SUGGESTIONS
from upload import UploadSurface, source_from_upload

logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory ``EditorSession`` per browser, keyed by a cookie id.

    Holds at most ``max_sessions`` sessions; the least recently used one is
    evicted when a new session would exceed the limit.
    """

    def __init__(self, client, max_sessions=config.MAX_SESSIONS):
        self.client = client
        self.max_sessions = max_sessions
        self._sessions = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id):
        with self._lock:
            editor = self._sessions.get(session_id)
            if editor is None:
                editor = self._sessions[session_id] = EditorSession(self.client)
                while len(self._sessions) > self.max_sessions:
                    evicted, _ = self._sessions.popitem(last=False)
                    logger.info("Evicted idle session %s", evicted)
            else:
                self._sessions.move_to_end(session_id)
            return editor

    def peek(self, session_id):
        """Return the session for ``session_id`` without creating one."""
        with self._lock:
            editor = self._sessions.get(session_id)
            if editor is not None:
                self._sessions.move_to_end(session_id)
            return editor

    def __len__(self):
        return len(self._sessions)


def create_app(edit_client=None, sessions=None):
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY

    if edit_client is None:
        edit_client = EditClient(config.GEMINI_API_KEY)
    if sessions is None:
        sessions = SessionStore(edit_client)
    app.extensions["nanoedit"] = sessions

    def current_editor():
        if "sid" not in session:
            session["sid"] = uuid.uuid4().hex
        return sessions.get(session["sid"])

    def existing_editor():
        sid = session.get("sid")
        return sessions.peek(sid) if sid else None

    def empty_view():
        return EditorSession(edit_client).view()

    @app.route("/")
    def index():
        return HTML_PAGE.replace(
            "/*__SUGGESTIONS__*/[]",
            json.dumps(SUGGESTIONS),
        ).replace("__PLACEHOLDER__", PROMPT_PLACEHOLDER)

    @app.route("/api/state")
    def state():
        editor = existing_editor()
        return jsonify(editor.view() if editor else empty_view())

    @app.route("/api/upload", methods=["POST"])
    def upload():
        editor = current_editor()
        files = request.files.getlist("image")
        if not files:
            return jsonify({"error": "No image provided"}), 400

        try:
            sources = [source_from_upload(f) for f in files[:1]]
            accepted = UploadSurface(editor.select_image).receive(sources, request.form.get("via"))
        except OSError:
            logger.exception("Failed to read uploaded file")
            return jsonify({**editor.view(), "error": READ_FAILURE}), 500

        return jsonify({"accepted": accepted, **editor.view()})

    @app.route("/api/prompt", methods=["POST"])
    def prompt():
        editor = current_editor()
        data = request.get_json(silent=True) or {}

        if "suggestion" in data:
            try:
                editor.apply_suggestion(int(data["suggestion"]))
            except (TypeError, ValueError, IndexError):
                return jsonify({"error": f"Unknown suggestion: {data['suggestion']}"}), 400
        else:
            editor.set_prompt(str(data.get("prompt", "")))

        return jsonify(editor.view())

    @app.route("/api/generate", methods=["POST"])
    def generate():
        editor = current_editor()
        data = request.get_json(silent=True) or {}
        if "prompt" in data:
            editor.set_prompt(str(data["prompt"]))

        try:
            start = time.time()
            outcome = editor.generate()
            elapsed = round(time.time() - start, 1)
        except OSError:
            logger.exception("Failed to read source image")
            return jsonify({**editor.view(), "error": READ_FAILURE}), 500

        view = editor.view()
        if outcome is Outcome.REJECTED:
            return jsonify({**view, "error": "Upload an image and describe your edit first"}), 409
        view["applied"] = outcome is Outcome.APPLIED
        if not view["applied"]:
            return jsonify(view)
        view["elapsed"] = elapsed
        if view["state"] == SessionState.ERROR.value:
            return jsonify(view), 502
        return jsonify(view)

    @app.route("/api/reset", methods=["POST"])
    def reset():
        editor = existing_editor()
        if editor is None:
            return jsonify(empty_view())
        editor.reset()
        return jsonify(editor.view())

    @app.route("/api/download")
    def download():
        editor = existing_editor()
        result = editor.result if editor else None
        if result is None:
            return jsonify({"error": "No edited image to download"}), 404

        try:
            _mime, raw = from_data_url(result.image_url)
            png = as_png(raw)
        except (OSError, ValueError) as e:
            logger.error("Could not decode edited image for download: %s", e)
            return jsonify({"error": "The edited image could not be decoded for download"}), 502

        return send_file(
            io.BytesIO(png),
            mimetype="image/png",
            as_attachment=True,
            download_name=editor.download_name(),
        )

    @app.route("/api/health")
    def health():
        return jsonify({
            "configured": edit_client.configured,
            "model": edit_client.model,
            "message": "Gemini API key configured" if edit_client.configured else "Gemini API key not set",
        })

    return app


HTML_PAGE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>NanoEdit AI</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: #0f172a;
    color: #f1f5f9;
    min-height: 100vh;
  }

  .glow { position: fixed; width: 40%; height: 40%; border-radius: 50%; filter: blur(100px); pointer-events: none; z-index: 0; }
  .glow.top { top: -10%; left: -10%; background: rgba(49, 46, 129, 0.2); }
  .glow.bottom { bottom: -10%; right: -10%; background: rgba(88, 28, 135, 0.2); }

  .shell { position: relative; z-index: 1; display: flex; flex-direction: column; min-height: 100vh; }

  header {
    display: flex; align-items: center; gap: 10px;
    padding: 18px 32px;
    border-bottom: 1px solid #1e293b;
  }
  header h1 { font-size: 20px; font-weight: 700; }
  header h1 span { color: #818cf8; }

  main { flex: 1; padding: 32px; width: 100%; max-width: 1200px; margin: 0 auto; }

  footer { padding: 24px; text-align: center; color: #475569; font-size: 13px; }

  .hero { max-width: 560px; margin: 48px auto 0; text-align: center; }
  .hero h2 { font-size: 34px; margin-bottom: 12px; }
  .hero p { color: #94a3b8; font-size: 17px; margin-bottom: 36px; }

  .dropzone {
    position: relative;
    height: 300px;
    border: 2px dashed #334155;
    border-radius: 16px;
    background: rgba(30, 41, 59, 0.5);
    display: flex; flex-direction: column; align-items: center; justify-content: center;
    transition: all 0.3s ease;
    cursor: pointer;
  }
  .dropzone:hover { border-color: #475569; background: #1e293b; }
  .dropzone.dragging { border-color: #6366f1; background: rgba(99, 102, 241, 0.1); transform: scale(1.01); }
  .dropzone input { position: absolute; inset: 0; opacity: 0; cursor: pointer; }
  .dropzone h3 { font-size: 18px; font-weight: 500; margin-bottom: 6px; }
  .dropzone p { font-size: 14px; color: #64748b; }

  .workspace { display: none; grid-template-columns: 4fr 8fr; gap: 32px; }
  .workspace.visible { display: grid; }

  .card {
    background: rgba(30, 41, 59, 0.5);
    border: 1px solid #334155;
    border-radius: 16px;
    padding: 24px;
    margin-bottom: 24px;
  }
  .card-title {
    display: flex; justify-content: space-between; align-items: center;
    font-size: 13px; font-weight: 600; color: #94a3b8;
    text-transform: uppercase; letter-spacing: 0.06em;
    margin-bottom: 14px;
  }
  .link-btn { background: none; border: none; color: #64748b; font-size: 12px; cursor: pointer; text-transform: none; }
  .link-btn:hover { color: #f87171; }
  .download { color: #818cf8; font-size: 12px; text-decoration: none; text-transform: none; display: none; }
  .download.visible { display: inline; }

  .preview { aspect-ratio: 1; border-radius: 12px; overflow: hidden; background: #0f172a; border: 1px solid #334155; }
  .preview img { width: 100%; height: 100%; object-fit: cover; }

  textarea {
    width: 100%; height: 128px; resize: none;
    background: #0f172a; color: #f1f5f9;
    border: 1px solid #334155; border-radius: 12px;
    padding: 14px; font: inherit; margin-bottom: 14px;
  }
  textarea:focus { outline: none; border-color: #6366f1; }

  .chips { display: flex; flex-wrap: wrap; gap: 8px; margin-bottom: 20px; }
  .chip {
    font-size: 12px; padding: 4px 12px; border-radius: 999px;
    background: rgba(51, 65, 85, 0.5); color: #94a3b8;
    border: 1px solid transparent; cursor: pointer;
  }
  .chip:hover { background: rgba(99, 102, 241, 0.2); color: #a5b4fc; border-color: rgba(99, 102, 241, 0.3); }

  .generate {
    width: 100%; padding: 16px; border: none; border-radius: 12px;
    font-weight: 700; font-size: 15px; color: white; cursor: pointer;
    background: linear-gradient(90deg, #4f46e5, #9333ea);
  }
  .generate:disabled { background: #334155; opacity: 0.7; cursor: not-allowed; }

  .error-banner {
    display: none; margin-top: 16px; padding: 8px; border-radius: 8px;
    font-size: 14px; text-align: center;
    color: #f87171; background: rgba(127, 29, 29, 0.2); border: 1px solid rgba(127, 29, 29, 0.5);
  }
  .error-banner.visible { display: block; }

  .result-card { min-height: 500px; display: flex; flex-direction: column; }
  .result-pane {
    position: relative; flex: 1;
    display: flex; align-items: center; justify-content: center;
    border-radius: 12px; background: rgba(15, 23, 42, 0.5); border: 1px solid rgba(51, 65, 85, 0.5);
    overflow: hidden;
  }
  .result-pane img { max-width: 100%; max-height: 70vh; object-fit: contain; }
  .placeholder { color: #94a3b8; opacity: 0.5; }

  .overlay {
    display: none; position: absolute; inset: 0;
    flex-direction: column; align-items: center; justify-content: center;
    background: rgba(15, 23, 42, 0.8);
  }
  .overlay.visible { display: flex; }
  .spinner {
    width: 56px; height: 56px; margin-bottom: 16px;
    border: 4px solid #6366f1; border-top-color: transparent; border-radius: 50%;
    animation: spin 0.8s linear infinite;
  }
  @keyframes spin { to { transform: rotate(360deg); } }
  .status { margin-top: 10px; font-size: 12px; color: #64748b; text-align: center; }
  .timer { color: #818cf8; font-variant-numeric: tabular-nums; }

  @media (max-width: 900px) { .workspace.visible { grid-template-columns: 1fr; } }
</style>
</head>
<body>
<div class="glow top"></div>
<div class="glow bottom"></div>

<div class="shell">
  <header><h1>Nano<span>Edit</span> AI</h1></header>

  <main>
    <section class="hero" id="hero">
      <h2>Reimagine your photos</h2>
      <p>Upload an image and use natural language to edit it instantly with Gemini.</p>
      <div class="dropzone" id="dropzone">
        <input type="file" accept="image/*" id="fileInput">
        <h3 id="dropTitle">Upload an image</h3>
        <p>Drag and drop your image here, or click to browse files.</p>
      </div>
    </section>

    <section class="workspace" id="workspace">
      <div>
        <div class="card">
          <div class="card-title"><span>Original</span><button class="link-btn" id="resetBtn">Remove</button></div>
          <div class="preview"><img id="previewImg" alt="Original"></div>
        </div>

        <div class="card">
          <div class="card-title"><span>Your Vision</span></div>
          <textarea id="promptInput" placeholder="__PLACEHOLDER__"></textarea>
          <div class="chips" id="chips"></div>
          <button class="generate" id="generateBtn" disabled>Generate Magic</button>
          <div class="status" id="status"></div>
          <div class="error-banner" id="errorBanner"></div>
        </div>
      </div>

      <div class="card result-card">
        <div class="card-title">
          <span>Result</span>
          <a class="download" id="downloadLink" href="/api/download">Download</a>
        </div>
        <div class="result-pane">
          <div class="overlay" id="overlay"><div class="spinner"></div><p>Dreaming up your image...</p></div>
          <img id="resultImg" alt="Generated result" hidden>
          <p class="placeholder" id="placeholder">Your masterpiece will appear here</p>
        </div>
      </div>
    </section>
  </main>

  <footer>&copy; <span id="year"></span> NanoEdit AI. Built with Gemini.</footer>
</div>

<script>
  const SUGGESTIONS = /*__SUGGESTIONS__*/[];

  const heroEl = document.getElementById('hero');
  const workspaceEl = document.getElementById('workspace');
  const dropzoneEl = document.getElementById('dropzone');
  const dropTitleEl = document.getElementById('dropTitle');
  const fileInputEl = document.getElementById('fileInput');
  const previewImgEl = document.getElementById('previewImg');
  const promptEl = document.getElementById('promptInput');
  const chipsEl = document.getElementById('chips');
  const generateBtn = document.getElementById('generateBtn');
  const statusEl = document.getElementById('status');
  const errorEl = document.getElementById('errorBanner');
  const overlayEl = document.getElementById('overlay');
  const resultImgEl = document.getElementById('resultImg');
  const placeholderEl = document.getElementById('placeholder');
  const downloadEl = document.getElementById('downloadLink');
  let view = { state: 'IDLE', preview: null, result: null, error: null, prompt: '' };

  document.getElementById('year').textContent = new Date().getFullYear();

  // ── Rendering ──
  function render(next) {
    view = next;
    const processing = view.state === 'PROCESSING';

    heroEl.style.display = view.preview ? 'none' : '';
    workspaceEl.classList.toggle('visible', !!view.preview);
    if (view.preview) previewImgEl.src = view.preview;
    if (document.activeElement !== promptEl) promptEl.value = view.prompt || '';

    generateBtn.disabled = processing || !promptEl.value.trim();
    generateBtn.textContent = processing ? 'Generating...' : 'Generate Magic';
    overlayEl.classList.toggle('visible', processing);

    errorEl.textContent = view.error || '';
    errorEl.classList.toggle('visible', !!view.error);

    resultImgEl.hidden = !view.result;
    if (view.result) resultImgEl.src = view.result;
    placeholderEl.style.display = view.result || processing ? 'none' : '';
    downloadEl.classList.toggle('visible', !!view.result);
  }

  // ── API call helper ──
  async function callApi(path, options) {
    const res = await fetch(path, options);
    const data = await res.json();
    if (data.state) render(data);
    if (!res.ok) throw new Error(data.error || 'HTTP ' + res.status);
    return data;
  }

  function postJson(path, body) {
    return callApi(path, {
      method: 'POST',
      headers: { 'Content-Type': 'application/json' },
      body: JSON.stringify(body || {}),
    });
  }

  // ── Upload surface ──
  async function upload(file, via) {
    const form = new FormData();
    form.append('image', file);
    form.append('via', via);
    try {
      await callApi('/api/upload', { method: 'POST', body: form });
    } catch (e) {
      errorEl.textContent = e.message;
      errorEl.classList.add('visible');
    }
  }

  function setDragging(on) {
    dropzoneEl.classList.toggle('dragging', on);
    dropTitleEl.textContent = on ? "Drop it like it's hot" : 'Upload an image';
  }

  dropzoneEl.addEventListener('dragover', e => { e.preventDefault(); setDragging(true); });
  dropzoneEl.addEventListener('dragleave', e => { e.preventDefault(); setDragging(false); });
  dropzoneEl.addEventListener('drop', e => {
    e.preventDefault();
    setDragging(false);
    const files = e.dataTransfer.files;
    if (files && files.length > 0 && files[0].type.startsWith('image/')) upload(files[0], 'drop');
  });
  fileInputEl.addEventListener('change', e => {
    if (e.target.files && e.target.files.length > 0) upload(e.target.files[0], 'picker');
    fileInputEl.value = '';
  });

  // ── Prompt editor ──
  SUGGESTIONS.forEach((text, idx) => {
    const chip = document.createElement('button');
    chip.className = 'chip';
    chip.textContent = text;
    chip.addEventListener('click', () => {
      promptEl.value = text;
      postJson('/api/prompt', { suggestion: idx }).catch(() => {});
    });
    chipsEl.appendChild(chip);
  });

  promptEl.addEventListener('input', () => {
    generateBtn.disabled = view.state === 'PROCESSING' || !promptEl.value.trim();
  });
  promptEl.addEventListener('change', () => {
    postJson('/api/prompt', { prompt: promptEl.value }).catch(() => {});
  });
  promptEl.addEventListener('keydown', e => {
    if (e.key === 'Enter' && (e.metaKey || e.ctrlKey)) { e.preventDefault(); generate(); }
  });

  // ── Generate ──
  let timer = null;

  async function generate() {
    if (generateBtn.disabled) return;
    const prompt = promptEl.value;
    render(Object.assign({}, view, { state: 'PROCESSING', error: null, prompt }));

    const t0 = Date.now();
    clearInterval(timer);
    timer = setInterval(() => {
      statusEl.innerHTML = '<span class="timer">' + ((Date.now() - t0) / 1000).toFixed(1) + 's</span> waiting for response...';
    }, 100);

    try {
      const data = await postJson('/api/generate', { prompt });
      if (data.applied) {
        statusEl.innerHTML = 'Completed in <span class="timer">' + data.elapsed + 's</span>';
      } else {
        statusEl.textContent = '';
      }
    } catch (e) {
      statusEl.textContent = '';
      if (!errorEl.textContent) {
        errorEl.textContent = e.message;
        errorEl.classList.add('visible');
      }
    } finally {
      clearInterval(timer);
      timer = null;
    }
  }

  generateBtn.addEventListener('click', generate);

  // ── Download ──
  downloadEl.addEventListener('click', async e => {
    e.preventDefault();
    const res = await fetch('/api/download');
    if (!res.ok) {
      const data = await res.json();
      errorEl.textContent = data.error || 'HTTP ' + res.status;
      errorEl.classList.add('visible');
      return;
    }
    const disposition = res.headers.get('Content-Disposition') || '';
    const match = disposition.match(/filename="?([^";]+)"?/);
    const url = URL.createObjectURL(await res.blob());
    const a = document.createElement('a');
    a.href = url;
    a.download = match ? match[1] : 'nanoedit-' + Date.now() + '.png';
    a.click();
    URL.revokeObjectURL(url);
  });

  document.getElementById('resetBtn').addEventListener('click', () => {
    statusEl.textContent = '';
    postJson('/api/reset').catch(() => {});
  });

  fetch('/api/state').then(r => r.json()).then(render);
</script>
</body>
</html>
"""

if __name__ == "__main__":
    config.configure_logging()
    create_app().run(debug=True, port=config.PORT, threaded=True)
