# app.py

from collections import namedtuple
import base64
import binascii
import io
import os

from flask import Flask, Response, request, jsonify
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad
import qrcode
import qrcode.image.svg
from qrcode.exceptions import DataOverflowError

app = Flask(__name__)

# Environment variable holding the shared AES key
KEY_ENV_VAR = 'UTS_QR_KEY'

FIELD_DELIMITER = ':'
RECORD_FIELDS = ('name', 'code', 'latitude', 'longitude')

Record = namedtuple('Record', RECORD_FIELDS)

# Characters left behind by PKCS#7 padding (pad bytes are 0x01-0x10)
PADDING_CHARS = ''.join(chr(c) for c in range(0x01, 0x11))
PADDING_TABLE = str.maketrans('', '', PADDING_CHARS)


class QRCodecError(ValueError):
    """Base class for token encoding/decoding failures."""


class MissingDataError(QRCodecError):
    pass


class InvalidDataError(QRCodecError):
    pass


class KeyConfigurationError(QRCodecError):
    """The shared key is absent or not a valid AES key length."""


def get_qr_key():
    """Read the shared key from the environment."""
    key = os.environ.get(KEY_ENV_VAR, '')
    if not key.strip():
        raise KeyConfigurationError(f"{KEY_ENV_VAR} is not set")
    return key


def _cipher(key):
    key_bytes = key.strip().encode('utf-8')
    if len(key_bytes) not in AES.key_size:
        raise KeyConfigurationError(
            f"AES key must be 16, 24 or 32 bytes, got {len(key_bytes)}")
    return AES.new(key_bytes, AES.MODE_ECB)


def encrypt(key, text):
    """
    Encrypt a string using AES-ECB with PKCS#7 padding.
    Returns the ciphertext as base64 text.
    """
    cipher = _cipher(key)
    data = pad(text.strip().encode('utf-8'), AES.block_size)
    ciphertext = cipher.encrypt(data)
    return base64.b64encode(ciphertext).decode('ascii')


def decrypt(key, token):
    """
    Decrypt base64 text produced by encrypt().

    Padding is removed by deleting every character in U+0001-U+0010 from the
    decrypted text rather than reading and validating the trailing pad length.
    Existing tokens and clients depend on this, so keep it even though field
    text containing those characters is silently altered.
    """
    cipher = _cipher(key)
    try:
        ciphertext = base64.b64decode(token.strip())
    except (binascii.Error, ValueError) as e:
        raise InvalidDataError(f"token is not valid base64: {e}")
    try:
        decrypted = cipher.decrypt(ciphertext)
    except ValueError as e:
        # ECB needs whole blocks
        raise InvalidDataError(f"ciphertext length {len(ciphertext)} rejected: {e}")

    text = decrypted.decode('utf-8', errors='replace')
    text = text.translate(PADDING_TABLE)
    return text.strip()


def encode_record(key, record):
    """Join the record fields and encrypt them into a token."""
    plaintext = FIELD_DELIMITER.join(record)
    return encrypt(key, plaintext)


def decode_record(key, token):
    """
    Decrypt a token back into a Record.
    Raises MissingDataError for empty input and InvalidDataError when the
    token does not yield exactly four fields.
    """
    if not token or not token.strip():
        raise MissingDataError("missing data")

    text = decrypt(key, token)
    parts = text.split(FIELD_DELIMITER)
    if len(parts) != len(RECORD_FIELDS):
        raise InvalidDataError(f"expected {len(RECORD_FIELDS)} fields, got {len(parts)}")
    return Record(*parts)


def render_qr_svg(token):
    """Render the token as an SVG QR code and return the document bytes."""
    img = qrcode.make(token, image_factory=qrcode.image.svg.SvgPathImage)
    svg_io = io.BytesIO()
    img.save(svg_io)
    return svg_io.getvalue()


def _preview(token, length=8):
    # Only log a prefix of the token
    token = token.strip()
    if len(token) <= length:
        return token
    return f"{token[:length]}..."


@app.route('/genqr', methods=['GET'])
def genqr_route():
    name = request.args.get('name')
    code = request.args.get('code')
    latitude = request.args.get('latitude')
    longitude = request.args.get('longitude')

    if not name or not code or not latitude or not longitude:
        app.logger.warning("genqr rejected: missing parameters")
        return jsonify({'error': 'missing parameters'}), 400

    record = Record(name.upper(), code.upper(), latitude, longitude)
    try:
        token = encode_record(get_qr_key(), record)
    except KeyConfigurationError as e:
        app.logger.error(f"Cannot encode QR payload: {e}")
        return jsonify({'error': 'server misconfigured'}), 500

    try:
        svg = render_qr_svg(token)
    except (DataOverflowError, ValueError) as e:
        # Token too long for the largest QR version
        app.logger.warning(f"genqr rejected token of {len(token)} chars: {e}")
        return jsonify({'error': 'invalid parameters'}), 400

    app.logger.info(f"Generated token {_preview(token)} for code {record.code}")
    return Response(svg, mimetype='image/svg+xml')


@app.route('/decode', methods=['POST'])
def decode_route():
    data = request.get_data(as_text=True)
    if not data.strip():
        app.logger.warning("decode rejected: missing data")
        return jsonify({'error': 'missing data'}), 400

    try:
        record = decode_record(get_qr_key(), data)
    except KeyConfigurationError as e:
        app.logger.error(f"Cannot decode QR payload: {e}")
        return jsonify({'error': 'server misconfigured'}), 500
    except InvalidDataError as e:
        app.logger.warning(f"decode rejected token {_preview(data)}: {e}")
        return jsonify({'error': 'invalid data'}), 400

    return jsonify(record._asdict())


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host='0.0.0.0', port=port)
