# ─────────────────────────────────────────────────────────────────────────────
# Encoding Utilities — base64 and data-URI helpers
# ─────────────────────────────────────────────────────────────────────────────


import base64
import binascii


def encode_base64(data: bytes) -> str:
    """Encode raw bytes to an ASCII base64 string."""
    return base64.b64encode(data).decode("ascii")


def decode_base64(data: str) -> bytes:
    """Strictly decode a base64 string. Raises ValueError on malformed input."""
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def to_data_uri(data: bytes, mime_type: str) -> str:
    """Wrap bytes as a `data:<mime>;base64,<payload>` URI."""
    return f"data:{mime_type};base64,{encode_base64(data)}"

