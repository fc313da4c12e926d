# promptedit/ui/server.py
from __future__ import annotations

import html
import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, unquote

from promptedit.api.client import ImageEditClient
from promptedit.api.gateway import EditGateway
from promptedit.io.codec import DecodeError, ImageFile, load_image_file, sniff_mime_type
from promptedit.pipeline.session import EditSession
from promptedit.prompt.templates import EXAMPLE_PROMPTS

LOGGER = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 32 * 1024 * 1024
DEFAULT_UPLOAD_NAME = "upload.png"


class ReuseHTTPServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True


class EditorHandler(BaseHTTPRequestHandler):
    session: EditSession | None = None

    def log_message(self, fmt: str, *args) -> None:
        LOGGER.info("%s - %s", self.address_string(), fmt % args)

    def do_GET(self) -> None:
        try:
            if self.path == "/":
                self._serve_index()
            elif self.path.startswith("/state.json"):
                self._serve_state()
            elif self.path.startswith("/download"):
                self._serve_download()
            else:
                self.send_error(404)
        except Exception:
            LOGGER.exception("GET %s crashed", self.path)
            self._send_json(500, {"error": "handler_crash", "where": "do_GET"})

    def do_POST(self) -> None:
        try:
            if not self.session:
                self._send_json(500, {"error": "no_session"})
                return
            if self.path == "/upload":
                self._handle_upload()
            elif self.path == "/prompt":
                self._handle_prompt()
            elif self.path == "/generate":
                self._handle_generate()
            elif self.path == "/edit-again":
                self._handle_edit_again()
            elif self.path == "/drop":
                self._handle_drop()
            else:
                self.send_error(404)
        except Exception:
            LOGGER.exception("POST %s crashed", self.path)
            self._send_json(500, {"error": "handler_crash", "where": "do_POST"})

    # ------------------------
    # helpers

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length", "0") or "0")
        if length > MAX_UPLOAD_BYTES:
            raise DecodeError(f"upload too large ({length} bytes)")
        return self.rfile.read(length)

    def _read_form(self) -> dict[str, str]:
        raw = self._read_body().decode("utf-8", errors="replace")
        data = parse_qs(raw)
        return {k: (v[0] if v else "") for k, v in data.items()}

    def _send_json(self, status: int, payload: dict) -> None:
        b = json.dumps(payload, indent=2).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(b)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(b)

    def _send_html(self, page: str) -> None:
        b = page.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(b)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(b)

    def _send_state(self, status: int = 200, **extra) -> None:
        assert self.session is not None
        payload = self.session.snapshot()
        payload.update(extra)
        self._send_json(status, payload)

    # ------------------------
    # routes

    def _serve_index(self) -> None:
        chips = "".join(
            '<button class="chip" type="button">' + html.escape(p) + "</button>" for p in EXAMPLE_PROMPTS
        )
        self._send_html(INDEX_HTML.replace("__EXAMPLE_CHIPS__", chips))

    def _serve_state(self) -> None:
        if not self.session:
            self._send_json(500, {"error": "no_session"})
            return
        self._send_state()

    def _serve_download(self) -> None:
        if not self.session:
            self._send_json(500, {"error": "no_session"})
            return

        out = self.session.download()
        if out is None:
            self._send_json(404, {"error": "no_result"})
            return

        self.send_response(200)
        self.send_header("Content-Type", out.mime_type)
        self.send_header("Content-Length", str(len(out.data)))
        self.send_header("Content-Disposition", f'attachment; filename="{out.filename.replace(chr(34), "_")}"')
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(out.data)

    def _handle_upload(self) -> None:
        assert self.session is not None
        try:
            data = self._read_body()
            name = unquote(self.headers.get("X-Filename", "") or "") or DEFAULT_UPLOAD_NAME
            declared = (self.headers.get("Content-Type", "") or "").split(";", 1)[0].strip()
            if not declared.startswith("image/"):
                declared = sniff_mime_type(data, fallback=None) or ""
            if not declared:
                raise DecodeError(f"{name} is not a recognized image")
            self.session.load_image(ImageFile(name=name, mime_type=declared, data=data))
        except DecodeError as e:
            self._send_state(400, detail=str(e))
            return
        self._send_state()

    def _handle_prompt(self) -> None:
        assert self.session is not None
        form = self._read_form()
        self.session.set_instruction(form.get("prompt", ""))
        self._send_state()

    def _handle_generate(self) -> None:
        assert self.session is not None
        form = self._read_form()
        prompt = form.get("prompt")
        res = self.session.generate(prompt)
        status = 400 if res.rejection_reason == "validation" else 200
        self._send_state(status, outcome=res.status, rejection_reason=res.rejection_reason)

    def _handle_edit_again(self) -> None:
        assert self.session is not None
        try:
            self.session.edit_again()
        except DecodeError as e:
            self._send_state(400, detail=str(e))
            return
        self._send_state()

    def _handle_drop(self) -> None:
        assert self.session is not None
        text = self._read_body().decode("utf-8", errors="replace").strip()
        try:
            self.session.drop(text=text)
        except DecodeError as e:
            self._send_state(400, detail=str(e))
            return
        self._send_state()


def build_session(client: ImageEditClient, *, initial_image: Path | None = None) -> EditSession:
    session = EditSession(EditGateway(client))
    if initial_image is not None:
        session.load_image(load_image_file(initial_image))
    return session


def run_server(
    *,
    client: ImageEditClient,
    initial_image: Path | None = None,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    EditorHandler.session = build_session(client, initial_image=initial_image)

    server = ReuseHTTPServer((host, port), EditorHandler)
    print(f"Running at http://{host}:{port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


# IMPORTANT:
# - NOT an f-string; only __EXAMPLE_CHIPS__ is substituted.
# - No JS template literals, so braces never collide with Python formatting.
INDEX_HTML = """\
<!doctype html>
<html>
<head>
<meta charset="utf-8"/>
<meta name="viewport" content="width=device-width, initial-scale=1"/>
<title>AI Image Editor</title>
<style>
  body {
    margin: 0;
    background: #111827;
    color: #f3f4f6;
    font-family: -apple-system, system-ui, Segoe UI, Roboto, Helvetica, Arial, sans-serif;
  }
  .wrap {
    max-width: 1200px;
    margin: 0 auto;
    padding: 16px;
    display: flex;
    gap: 16px;
    flex-wrap: wrap;
  }
  .col { flex: 1; min-width: 300px; display: flex; flex-direction: column; gap: 12px; }
  .panel {
    background: #1f2937;
    border: 1px solid #374151;
    border-radius: 12px;
    padding: 12px;
  }
  h1 { text-align: center; color: #c084fc; }
  h2 { margin: 0 0 8px 0; font-size: 16px; color: #d8b4fe; }

  #dropzone {
    height: 180px;
    border: 2px dashed #4b5563;
    border-radius: 8px;
    display: flex;
    align-items: center;
    justify-content: center;
    color: #9ca3af;
    cursor: pointer;
    overflow: hidden;
  }
  #dropzone.over { border-color: #c084fc; }
  #dropzone img { max-height: 100%; max-width: 100%; object-fit: contain; }

  textarea {
    width: 100%;
    height: 72px;
    resize: vertical;
    background: #111827;
    color: #f3f4f6;
    border: 1px solid #4b5563;
    border-radius: 8px;
    padding: 8px;
    box-sizing: border-box;
  }
  .chip {
    font-size: 12px;
    background: #374151;
    color: #e5e7eb;
    border: none;
    border-radius: 999px;
    padding: 4px 10px;
    margin: 2px;
    cursor: pointer;
  }
  button.main {
    background: linear-gradient(90deg, #a855f7, #ec4899);
    color: #fff;
    border: none;
    padding: 12px;
    font-weight: 800;
    border-radius: 8px;
    cursor: pointer;
  }
  button.secondary {
    background: #374151;
    color: #fff;
    border: none;
    padding: 8px 12px;
    font-weight: 700;
    border-radius: 8px;
    cursor: pointer;
  }
  button:disabled { opacity: 0.5; cursor: not-allowed; }

  .pane {
    background: #000;
    border-radius: 8px;
    min-height: 320px;
    display: flex;
    align-items: center;
    justify-content: center;
    color: #6b7280;
  }
  .pane img { max-width: 100%; max-height: 480px; }
  .err { color: #f87171; text-align: center; white-space: pre-wrap; }
  .actions { display: none; gap: 8px; margin-top: 8px; }
  .actions.shown { display: flex; }
</style>
</head>

<body>
<h1>AI Image Editor</h1>
<div class="wrap">

  <div class="col">
    <div class="panel">
      <h2>1. Upload Image</h2>
      <label id="dropzone" for="fileInput"><span>Click or drag to upload</span></label>
      <input id="fileInput" type="file" accept="image/*" style="display:none"/>
    </div>

    <div class="panel">
      <h2>2. Describe Your Edit</h2>
      <textarea id="prompt" placeholder="e.g., Add a retro filter"></textarea>
      <div style="font-size:12px;color:#9ca3af;margin-top:6px;">Or try an example:</div>
      <div id="chips">__EXAMPLE_CHIPS__</div>
    </div>

    <button id="genBtn" class="main">Generate Image</button>
    <div id="err" class="err"></div>
  </div>

  <div class="col">
    <h2>Original</h2>
    <div id="originalPane" class="pane">No image</div>
  </div>

  <div class="col">
    <h2>Edited</h2>
    <div id="editedPane" class="pane">No result yet</div>
    <div id="actions" class="actions">
      <button id="againBtn" class="secondary">Edit Again</button>
      <button id="dlBtn" class="secondary">Download Image</button>
    </div>
  </div>

</div>

<script>
  const dropzone = document.getElementById("dropzone");
  const fileInput = document.getElementById("fileInput");
  const promptEl = document.getElementById("prompt");
  const genBtn = document.getElementById("genBtn");
  const errEl = document.getElementById("err");
  const originalPane = document.getElementById("originalPane");
  const editedPane = document.getElementById("editedPane");
  const actions = document.getElementById("actions");

  let pollHandle = null;
  let lastPreview = null;
  let lastResult = null;
  let lastBusy = false;

  function render(st) {
    if (st.preview !== lastPreview) {
      lastPreview = st.preview;
      dropzone.innerHTML = "";
      originalPane.innerHTML = "";
      if (st.preview) {
        const a = document.createElement("img");
        a.src = st.preview;
        dropzone.appendChild(a);
        const b = document.createElement("img");
        b.src = st.preview;
        originalPane.appendChild(b);
      } else {
        dropzone.innerHTML = "<span>Click or drag to upload</span>";
        originalPane.textContent = "No image";
      }
    }

    if (st.result !== lastResult) {
      lastResult = st.result;
      editedPane.innerHTML = "";
      if (st.result) {
        const img = document.createElement("img");
        img.src = st.result;
        img.draggable = true;
        img.addEventListener("dragstart", function(e) {
          e.dataTransfer.setData("text/plain", st.result);
        });
        editedPane.appendChild(img);
      } else {
        editedPane.textContent = "No result yet";
      }
    }

    if (st.phase === "generating") editedPane.textContent = "Generating...";

    const busy = st.busy || st.in_flight;
    lastBusy = busy;
    promptEl.disabled = !st.image_name || st.phase === "generating";
    genBtn.disabled = !st.image_name || !promptEl.value.trim() || busy;
    if (st.phase === "awaiting_retry") {
      genBtn.textContent = "Retrying (" + st.seconds_remaining + "s)";
    } else if (st.phase === "generating") {
      genBtn.textContent = "Generating...";
    } else {
      genBtn.textContent = "Generate Image";
    }

    actions.classList.toggle("shown", !!st.result && !busy);
    errEl.textContent = st.status_message || "";

    if (busy && pollHandle === null) {
      pollHandle = setInterval(refresh, 500);
    } else if (!busy && pollHandle !== null) {
      clearInterval(pollHandle);
      pollHandle = null;
    }
  }

  async function refresh() {
    const r = await fetch("/state.json", {cache: "no-store"});
    render(await r.json());
  }

  async function post(path, body, headers) {
    const r = await fetch(path, {method: "POST", headers: headers || {}, body: body});
    const st = await r.json().catch(function() { return null; });
    if (st && st.phase) render(st);
    if (st && st.detail) errEl.textContent = st.detail;
    return st;
  }

  function form(fields) {
    const body = new URLSearchParams();
    for (const k in fields) body.set(k, fields[k]);
    return body.toString();
  }

  const FORM = {"Content-Type": "application/x-www-form-urlencoded"};

  async function uploadFile(file) {
    await post("/upload", file, {
      "Content-Type": file.type || "application/octet-stream",
      "X-Filename": encodeURIComponent(file.name),
    });
  }

  fileInput.addEventListener("change", function() {
    if (fileInput.files && fileInput.files.length > 0) uploadFile(fileInput.files[0]);
    fileInput.value = "";
  });

  dropzone.addEventListener("dragover", function(e) { e.preventDefault(); dropzone.classList.add("over"); });
  dropzone.addEventListener("dragleave", function() { dropzone.classList.remove("over"); });
  dropzone.addEventListener("drop", function(e) {
    e.preventDefault();
    dropzone.classList.remove("over");
    if (e.dataTransfer.files && e.dataTransfer.files.length > 0) {
      uploadFile(e.dataTransfer.files[0]);
      return;
    }
    const text = e.dataTransfer.getData("text/plain");
    if (text && text.indexOf("data:image") === 0) {
      post("/drop", text, {"Content-Type": "text/plain"});
    }
  });

  promptEl.addEventListener("change", function() {
    post("/prompt", form({prompt: promptEl.value}), FORM);
  });
  promptEl.addEventListener("input", function() {
    genBtn.disabled = !lastPreview || !promptEl.value.trim() || lastBusy;
  });

  document.querySelectorAll(".chip").forEach(function(chip) {
    chip.addEventListener("click", function() {
      promptEl.value = chip.textContent;
      post("/prompt", form({prompt: promptEl.value}), FORM);
    });
  });

  genBtn.addEventListener("click", function() {
    genBtn.disabled = true;
    if (pollHandle === null) pollHandle = setInterval(refresh, 500);
    post("/generate", form({prompt: promptEl.value}), FORM).catch(function(e) {
      errEl.textContent = "network error: " + String(e);
    });
  });

  document.getElementById("againBtn").addEventListener("click", function() {
    post("/edit-again", "", FORM);
  });

  document.getElementById("dlBtn").addEventListener("click", function() {
    const link = document.createElement("a");
    link.href = "/download";
    document.body.appendChild(link);
    link.click();
    document.body.removeChild(link);
  });

  fetch("/state.json", {cache: "no-store"}).then(function(r) { return r.json(); }).then(function(st) {
    if (st.instruction) promptEl.value = st.instruction;
    render(st);
  }).catch(function(e) {
    errEl.textContent = "refresh crash: " + String(e);
  });
</script>
</body>
</html>
"""
