import base64
import binascii
from typing import Tuple
from urllib.parse import unquote_to_bytes

from hearth.errors import DecodeError
from hearth.services.asset_writer import DEFAULT_EXTENSION, extension_for_media_type


def is_data_uri(value: str) -> bool:
    return (value or "")[:5].lower() == "data:"


def decode_data_uri(uri: str) -> Tuple[bytes, str]:
    """Decode ``data:[mediatype][;base64],<payload>`` into bytes and an extension.

    Unknown or missing media types get ``.ico``.
    """
    if not is_data_uri(uri):
        raise DecodeError("not a data URI")
    header, sep, payload = uri[5:].partition(",")
    if not sep:
        raise DecodeError("invalid data URI format")

    params = [p.strip().lower() for p in header.split(";")]
    if "base64" in params[1:]:
        try:
            data = base64.b64decode("".join(payload.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"invalid base64 payload: {e}") from e
    else:
        data = unquote_to_bytes(payload)

    if not data:
        raise DecodeError("empty data URI")
    return data, extension_for_media_type(params[0]) or DEFAULT_EXTENSION
