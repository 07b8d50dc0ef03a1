"""
Admin panel: a single HTML page that starts remote uploads.

GET /?pass=<secret> renders the page; the page calls
POST /api/upload?pass=<secret> and renders the progress stream.
"""
import json

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from r2relay.auth.dependencies import require_admin_secret

router = APIRouter()

ADMIN_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>R2 Remote Uploader</title>
<style>
  body{font-family:sans-serif;background:#111;color:#eee;display:flex;justify-content:center;padding-top:20px}
  .box{background:#222;padding:20px;border-radius:10px;width:95%;max-width:500px}
  input{width:100%;padding:10px;margin:5px 0 15px;background:#333;border:1px solid #444;color:#fff;box-sizing:border-box;border-radius:5px}
  button{width:100%;padding:12px;background:#2563eb;color:#fff;border:none;border-radius:5px;font-weight:bold;cursor:pointer}
  button:disabled{background:#555}
  progress{width:100%;height:18px;margin-top:15px;display:none}
  .res{margin-top:20px;display:none}
  #link{color:#4ade80;background:#000;border:1px solid #22c55e}
  #status{margin-top:10px;min-height:1em}
</style>
</head>
<body>
<div class="box">
  <h2 style="text-align:center">R2 Remote Uploader</h2>
  <label>File URL:</label>
  <input type="text" id="url" placeholder="https://...">
  <label>Save As (Name):</label>
  <input type="text" id="name" placeholder="movie.mp4">
  <button onclick="up()" id="btn">Upload to R2</button>
  <progress id="bar" max="100" value="0"></progress>
  <div id="status"></div>
  <div class="res" id="res">
    <p>Uploaded!</p>
    <input type="text" id="link" readonly>
    <button onclick="cpy()" style="background:#22c55e;margin-top:5px">Copy Link</button>
  </div>
</div>
<script>
const SECRET = __ADMIN_SECRET__;

function handle(rec, btn){
  const bar = document.getElementById('bar');
  const status = document.getElementById('status');
  if (rec.progress !== undefined) {
    bar.style.display = 'block';
    bar.value = rec.progress;
    status.innerText = rec.progress + '%';
  } else if (rec.success) {
    bar.value = 100;
    status.innerText = '';
    document.getElementById('link').value = rec.link;
    document.getElementById('res').style.display = 'block';
    btn.innerText = 'Upload Success';
  } else if (rec.error) {
    status.innerText = rec.error;
    btn.innerText = 'Try Again';
    btn.disabled = false;
  }
}

async function up(){
  const u = document.getElementById('url').value;
  const n = document.getElementById('name').value;
  if (!u || !n) return alert('Data missing');

  const btn = document.getElementById('btn');
  btn.disabled = true; btn.innerText = 'Uploading...';
  document.getElementById('res').style.display = 'none';

  try {
    const r = await fetch('/api/upload?pass=' + encodeURIComponent(SECRET), {
      method: 'POST',
      headers: {'Content-Type': 'application/json'},
      body: JSON.stringify({remoteUrl: u, customName: n})
    });
    if (!r.ok) throw new Error('HTTP ' + r.status);

    const reader = r.body.getReader();
    const decoder = new TextDecoder();
    let pending = '';
    while (true) {
      const {value, done} = await reader.read();
      if (done) break;
      pending += decoder.decode(value, {stream: true});
      let nl;
      while ((nl = pending.indexOf('\\n')) >= 0) {
        const line = pending.slice(0, nl).trim();
        pending = pending.slice(nl + 1);
        if (line) handle(JSON.parse(line), btn);
      }
    }
  } catch (e) {
    alert('Error: ' + e.message);
    btn.innerText = 'Try Again';
    btn.disabled = false;
  }
}

function cpy(){
  const link = document.getElementById('link');
  link.select();
  navigator.clipboard.writeText(link.value);
  alert('Copied');
}
</script>
</body>
</html>
"""


def render_admin_page(secret: str) -> str:
    """Admin page with the secret embedded for its upload calls."""
    # json.dumps yields a valid JS string literal; "</" is escaped so it cannot close the script tag
    literal = json.dumps(secret).replace("</", "<\\/")
    return ADMIN_PAGE.replace("__ADMIN_SECRET__", literal)


@router.get("/", response_class=HTMLResponse)
async def admin_panel(secret: str = Depends(require_admin_secret)):
    """
    Admin control surface.

    Requires the admin secret in the `pass` query parameter.
    """
    return HTMLResponse(render_admin_page(secret))
