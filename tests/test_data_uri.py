import base64

import pytest

from hearth.errors import DecodeError
from hearth.services.data_uri import decode_data_uri, is_data_uri


def test_base64_png(png_1x1):
    uri = "data:image/png;base64," + base64.b64encode(png_1x1).decode("ascii")
    data, ext = decode_data_uri(uri)
    assert data == png_1x1
    assert ext == ".png"


def test_base64_payload_may_contain_whitespace(png_1x1):
    encoded = base64.b64encode(png_1x1).decode("ascii")
    uri = "data:image/x-icon;base64," + encoded[:10] + "\n  " + encoded[10:]
    data, ext = decode_data_uri(uri)
    assert data == png_1x1
    assert ext == ".ico"


def test_percent_encoded_svg():
    data, ext = decode_data_uri("data:image/svg+xml,%3Csvg%20xmlns%3D%22http://www.w3.org/2000/svg%22/%3E")
    assert data == b'<svg xmlns="http://www.w3.org/2000/svg"/>'
    assert ext == ".svg"


@pytest.mark.parametrize(
    "media_type,expected",
    [
        ("image/jpeg", ".jpg"),
        ("image/webp", ".webp"),
        ("image/gif", ".gif"),
        ("image/vnd.microsoft.icon", ".ico"),
        ("text/plain", ".ico"),
        ("", ".ico"),
    ],
)
def test_extension_from_media_type(media_type, expected):
    _data, ext = decode_data_uri(f"data:{media_type},hello")
    assert ext == expected


def test_missing_comma_is_rejected():
    with pytest.raises(DecodeError):
        decode_data_uri("data:image/png;base64")


def test_bad_base64_is_rejected():
    with pytest.raises(DecodeError):
        decode_data_uri("data:image/png;base64,@@not-base64@@")


def test_empty_payload_is_rejected():
    with pytest.raises(DecodeError):
        decode_data_uri("data:image/png;base64,")


def test_is_data_uri():
    assert is_data_uri("DATA:image/png,x")
    assert not is_data_uri("https://example.com/favicon.ico")
