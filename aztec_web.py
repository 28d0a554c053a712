#!/usr/bin/env python3
"""
Aztec Structure Decoder Web API
Run: python3 aztec_web.py
POST an image as multipart field 'image' to http://<your-ip>:8080/decode
(optional form fields: size, output_size)
"""

import cv2
import numpy as np
from flask import Flask, request, jsonify

from aztec_decode import AztecError, decode_image

app = Flask(__name__)


@app.route('/decode', methods=['POST'])
def decode():
    if 'image' not in request.files:
        return jsonify({'success': False, 'error': 'No image uploaded'})

    file = request.files['image']
    if file.filename == '':
        return jsonify({'success': False, 'error': 'No file selected'})

    image = cv2.imdecode(np.frombuffer(file.read(), dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        return jsonify({'success': False, 'error': 'Cannot read image data'})
    print(f"[DECODE] Received {file.filename} ({image.shape[1]}x{image.shape[0]})", flush=True)

    try:
        result = decode_image(image, grid_size=request.form.get('size', type=int),
                              output_size=request.form.get('output_size', type=int))
    except AztecError as e:
        print(f"[DECODE] Error: {e}", flush=True)
        return jsonify({'success': False, 'error': str(e)})

    g = result.structure.geometry
    print(f"[DECODE] {g.size}x{g.size}, {len(result.symbols)} symbols: {result.text[:60]}", flush=True)
    return jsonify({'success': True, 'result': result.to_dict()})


if __name__ == '__main__':
    import socket

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
    print("Aztec Structure Decoder")
    print("=" * 50)
    print(f"\nPOST images to: http://{ip}:{port}/decode")
    print(f"Or on this computer: http://localhost:{port}/decode")
    print("\nPress Ctrl+C to stop\n")

    app.run(host='0.0.0.0', port=port, debug=False)
