#!/usr/bin/env python3
"""
QR Code Web App
Run: python3 qr_web.py
Visit: http://<your-ip>:8080 on your phone
"""

import logging

import cv2
import numpy as np
from flask import Flask, Response, jsonify, render_template_string, request

from qr_decode import detect_and_decode
from qr_encode import encode
from qr_render import render, to_image
from qr_types import ErrorKind, QRError, Version

logger = logging.getLogger(__name__)

app = Flask(__name__)

HTML = '''
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>QR Codec</title>
    <style>
        * { box-sizing: border-box; margin: 0; padding: 0; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            background: linear-gradient(135deg, #1a1a2e 0%, #16213e 100%);
            min-height: 100vh;
            padding: 20px;
            color: #fff;
        }
        .container { max-width: 500px; margin: 0 auto; }
        h1 { text-align: center; margin-bottom: 20px; font-size: 24px; }
        .panel {
            background: rgba(255,255,255,0.1);
            border-radius: 16px;
            padding: 20px;
            margin-bottom: 20px;
        }
        .btn {
            display: inline-block;
            padding: 12px 24px;
            margin: 8px 0;
            border: none;
            border-radius: 12px;
            font-size: 16px;
            font-weight: 600;
            cursor: pointer;
            background: linear-gradient(135deg, #2196F3, #1976D2);
            color: white;
        }
        input[type="text"], select { width: 100%; padding: 10px; margin: 6px 0; border-radius: 8px; border: none; }
        #preview, #encoded { max-width: 100%; border-radius: 12px; margin: 15px 0; display: none; background: #fff; }
        #result { word-break: break-all; font-size: 14px; line-height: 1.6; white-space: pre-wrap; }
        .error { color: #f88; }
    </style>
</head>
<body>
    <div class="container">
        <h1>QR Codec</h1>

        <div class="panel">
            <label class="btn">
                Decode image
                <input type="file" id="imageInput" accept="image/*" capture="environment" style="display:none">
            </label>
            <img id="preview" alt="Preview">
            <div id="result"></div>
        </div>

        <div class="panel">
            <input type="text" id="data" placeholder="Text to encode">
            <select id="level">
                <option>L</option><option>M</option><option>Q</option><option>H</option>
            </select>
            <input type="text" id="version" placeholder="Version (optional)">
            <label><input type="checkbox" id="micro"> Micro QR</label><br>
            <button class="btn" onclick="encodeData()">Encode</button>
            <div id="encodeError" class="error"></div>
            <img id="encoded" alt="QR code">
        </div>
    </div>

    <script>
        const result = document.getElementById('result');

        document.getElementById('imageInput').onchange = (e) => {
            if (!e.target.files.length) return;
            const file = e.target.files[0];
            const preview = document.getElementById('preview');
            preview.src = URL.createObjectURL(file);
            preview.style.display = 'block';
            result.textContent = 'Decoding...';

            const formData = new FormData();
            formData.append('image', file);
            fetch('/decode', { method: 'POST', body: formData })
                .then(r => r.json())
                .then(data => {
                    if (!data.success) {
                        result.innerHTML = '<span class="error">Error: ' + data.error + '</span>';
                    } else if (!data.results.length) {
                        result.textContent = 'No QR codes found';
                    } else {
                        result.textContent = data.results.map((r, i) =>
                            (i + 1) + '. [' + r.version + '] ' + (r.ok ? r.text : 'error: ' + r.error)
                        ).join('\\n');
                    }
                })
                .catch(err => { result.textContent = 'Network error: ' + err.message; });
        };

        function encodeData() {
            const formData = new FormData();
            formData.append('data', document.getElementById('data').value);
            formData.append('level', document.getElementById('level').value);
            formData.append('version', document.getElementById('version').value);
            formData.append('micro', document.getElementById('micro').checked ? '1' : '');
            formData.append('format', 'png');
            const err = document.getElementById('encodeError');
            const img = document.getElementById('encoded');
            fetch('/encode', { method: 'POST', body: formData })
                .then(r => r.ok ? r.blob().then(b => {
                    err.textContent = '';
                    img.src = URL.createObjectURL(b);
                    img.style.display = 'block';
                }) : r.json().then(d => { err.textContent = d.error; img.style.display = 'none'; }))
                .catch(e => { err.textContent = 'Network error: ' + e.message; });
        }
    </script>
</body>
</html>
'''


def _error(e, status=400):
    kind = e.kind.value if isinstance(e, QRError) else 'usage'
    return jsonify({'success': False, 'error': str(e), 'kind': kind}), status


def _result_json(res, encoding, lossy):
    g = res.grid
    out = {'ok': res.ok, 'version': str(g.version),
           'ec_level': g.ec_level.name if g.ec_level is not None else None,
           'mask': g.mask, 'corners': np.asarray(g.corners).round(1).tolist()}
    if not res.ok:
        out.update(error=str(res.error), kind=res.error.kind.value)
        return out
    out['data_hex'] = res.data.hex()
    try:
        out['text'] = res.text(encoding, lossy=lossy)
    except QRError as e:
        if e.kind is not ErrorKind.TEXT_DECODE:
            raise
        out.update(ok=False, error=str(e), kind=e.kind.value)
    return out


@app.route('/')
def index():
    return render_template_string(HTML)


@app.route('/decode', methods=['POST'])
def decode():
    if 'image' not in request.files:
        return jsonify({'success': False, 'error': 'No image uploaded'}), 400

    file = request.files['image']
    if file.filename == '':
        return jsonify({'success': False, 'error': 'No file selected'}), 400

    image = cv2.imdecode(np.frombuffer(file.read(), np.uint8), cv2.IMREAD_GRAYSCALE)
    if image is None:
        return _error(QRError(ErrorKind.IMAGE, f"cannot decode image {file.filename}"))

    encoding = request.form.get('encoding', 'utf-8')
    lossy = bool(request.form.get('lossy'))
    try:
        results = [_result_json(r, encoding, lossy) for r in detect_and_decode(image)]
    except QRError as e:
        return _error(e)
    logger.info("decoded %d symbol(s) from %s", len(results), file.filename)
    return jsonify({'success': True, 'results': results, 'count': len(results)})


@app.route('/encode', methods=['POST'])
def encode_route():
    form = request.form
    micro = bool(form.get('micro'))
    try:
        version = form.get('version', '').strip()
        version = Version(int(version), micro) if version else None
        code = encode(form.get('data', ''), version=version, level=form.get('level', 'L'), micro=micro)
    except ValueError as e:
        return _error(e)

    if form.get('format', 'text') == 'png':
        ok, buf = cv2.imencode('.png', to_image(code, scale=8))
        return Response(buf.tobytes(), mimetype='image/png')
    return jsonify({'success': True, 'version': str(code.version), 'ec_level': code.ec_level.name,
                    'mask': code.mask, 'rows': list(render(code))})


if __name__ == '__main__':
    import socket

    logging.basicConfig(level=logging.INFO)

    # Get local IP
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(('8.8.8.8', 80))
        ip = s.getsockname()[0]
    except OSError:
        ip = '127.0.0.1'
    finally:
        s.close()

    port = 8080
    print("=" * 50)
    print("QR Code Web App")
    print("=" * 50)
    print(f"\nVisit on your phone: http://{ip}:{port}")
    print(f"Or on this computer: http://localhost:{port}")
    print("\nPress Ctrl+C to stop\n")

    app.run(host='0.0.0.0', port=port, debug=False)
