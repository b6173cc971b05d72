import base64

import pytest

from app.utils import decoded_data_url_size, fold, split_display_name


def test_fold_ignores_case_and_padding():
    assert fold("  Ação ") == fold("AÇÃO")
    assert fold(None) == ""


def test_split_display_name():
    assert split_display_name("Ana Maria Souza") == ("Ana", "Maria Souza")
    assert split_display_name("Cher") == ("Cher", None)
    assert split_display_name("   ") == (None, None)
    assert split_display_name(None) == (None, None)


def test_decoded_data_url_size_reports_mime_and_bytes():
    payload = base64.b64encode(b"\x89PNG" + b"\x00" * 96).decode("ascii")

    mime, size = decoded_data_url_size(f"data:image/PNG;base64,{payload}")

    assert mime == "image/png"
    assert size == 100


@pytest.mark.parametrize(
    "value",
    [
        "data:image/png,not-base64-marked",
        "data:image/png;base64,@@@@",
        "https://example.com/avatar.png",
    ],
)
def test_decoded_data_url_size_rejects_malformed_values(value):
    with pytest.raises(ValueError):
        decoded_data_url_size(value)
