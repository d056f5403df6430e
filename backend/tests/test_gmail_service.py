"""Unit tests for Gmail listing, backoff and body extraction."""
import base64

import pytest
from unittest.mock import MagicMock, patch
from googleapiclient.errors import HttpError

from mailledger.gmail_service import _with_backoff, email_to_parts, list_message_ids


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def test_email_to_parts_prefers_nested_plain_text():
    message = {
        "id": "msg123",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": "Transferencia exitosa"},
                {"name": "From", "value": "alertas@davivienda.com"},
                {"name": "Date", "value": "Sat, 03 Jan 2026 23:26:40 +0000"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/html", "body": {"data": _b64("<p>HTML</p>")}},
                        {"mimeType": "text/plain", "body": {"data": _b64("Valor: $50.000")}},
                    ],
                }
            ],
        },
    }
    mid, subject, sender, date_header, body = email_to_parts(message)
    assert mid == "msg123"
    assert subject == "Transferencia exitosa"
    assert sender == "alertas@davivienda.com"
    assert date_header.startswith("Sat, 03 Jan 2026")
    assert body == "Valor: $50.000"


def test_html_only_body_is_stripped_and_unescaped():
    message = {
        "id": "m",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [],
            "parts": [
                {
                    "mimeType": "text/html",
                    "body": {"data": _b64("<style>p{}</style><p>Compra&nbsp;en <b>&Eacute;XITO</b></p>")},
                }
            ],
        },
    }
    assert email_to_parts(message)[4] == "Compra en ÉXITO"


def test_snippet_fallback():
    message = {"id": "m", "snippet": "Abono &amp; más", "payload": {"mimeType": "multipart/mixed", "parts": []}}
    assert email_to_parts(message)[4] == "Abono & más"


def test_list_message_ids_follows_pages_and_filters_by_label():
    service = MagicMock()
    list_call = service.users.return_value.messages.return_value.list
    list_call.return_value.execute.side_effect = [
        {"messages": [{"id": "1"}, {"id": "2"}], "nextPageToken": "p2"},
        {"messages": [{"id": "2"}, {"id": "3"}]},
    ]
    ids = list_message_ids(service, "Label_42", 1767225600)
    assert ids == ["1", "2", "3"]
    first_kwargs = list_call.call_args_list[0].kwargs
    assert first_kwargs["labelIds"] == ["Label_42"]
    assert first_kwargs["q"] == "after:1767225600"
    assert list_call.call_args_list[1].kwargs["pageToken"] == "p2"


def test_list_message_ids_stops_on_repeated_token():
    service = MagicMock()
    service.users.return_value.messages.return_value.list.return_value.execute.return_value = {
        "messages": [{"id": "1"}],
        "nextPageToken": "same",
    }
    with patch("mailledger.gmail_service.settings") as fake_settings:
        fake_settings.gmail_messages_max_results = 100
        fake_settings.gmail_max_pages = 50
        assert list_message_ids(service, "", 0) == ["1"]
    assert service.users.return_value.messages.return_value.list.return_value.execute.call_count == 2


def _http_error(status: int) -> HttpError:
    resp = MagicMock()
    resp.status = status
    resp.reason = "err"
    return HttpError(resp, b"{}")


def test_backoff_retries_rate_limits():
    sleeps = []
    fn = MagicMock(side_effect=[_http_error(429), _http_error(503), {"ok": True}])
    assert _with_backoff(fn, sleep=sleeps.append) == {"ok": True}
    assert sleeps == [1, 2]


def test_backoff_does_not_retry_client_errors():
    fn = MagicMock(side_effect=_http_error(404))
    with pytest.raises(HttpError):
        _with_backoff(fn, sleep=lambda s: None)
    assert fn.call_count == 1
