"""Gmail API integration: label listing since a timestamp, full message fetch, body extraction."""
import base64
import html
import logging
import os
import pickle
import re
import time
from email.utils import parsedate_to_datetime
from typing import Optional, List

from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import settings
from .errors import GmailAuthRequiredError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(backend_dir, path)


def _save_token(creds) -> None:
    token_path = _resolve_path(settings.token_path)
    with open(token_path, "wb") as token:
        pickle.dump(creds, token)
    try:
        os.chmod(token_path, 0o600)
    except OSError:
        logger.warning(f"Could not restrict permissions on {token_path}")


def gmail_creds_ready_for_background() -> bool:
    """True if we can get a service without blocking on browser OAuth."""
    token_path = _resolve_path(settings.token_path)
    if not os.path.exists(token_path):
        return False
    try:
        with open(token_path, "rb") as token:
            creds = pickle.load(token)
    except (OSError, pickle.UnpicklingError, EOFError):
        return False
    if not creds:
        return False
    return bool(creds.valid or (creds.expired and creds.refresh_token))


def get_gmail_service(allow_interactive_oauth: bool = False):
    """
    Return Gmail API service. If allow_interactive_oauth is False (default) and
    we would need to open a browser (run_local_server), raises GmailAuthRequiredError
    so the caller can record a failure instead of blocking forever in a background task.
    """
    creds = None
    token_path = _resolve_path(settings.token_path)
    creds_path = _resolve_path(settings.credentials_path)

    if os.path.exists(token_path):
        with open(token_path, "rb") as token:
            creds = pickle.load(token)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except Exception as e:
                if not allow_interactive_oauth:
                    raise GmailAuthRequiredError(
                        "Gmail token expired and refresh failed. Open /api/gmail/auth in your browser to sign in again."
                    ) from e
                raise
        else:
            if not os.path.exists(creds_path):
                raise FileNotFoundError(
                    f"Gmail credentials not found at {creds_path}. "
                    "Download from Google Cloud Console and save as credentials.json"
                )
            if not allow_interactive_oauth:
                raise GmailAuthRequiredError(
                    "Gmail authorization required. Open /api/gmail/auth in your browser to sign in, then try Sync again."
                )
            flow = InstalledAppFlow.from_client_secrets_file(creds_path, SCOPES)
            creds = flow.run_local_server(port=0)
        _save_token(creds)

    return build("gmail", "v1", credentials=creds)


# Rate limiting: exponential backoff
def _with_backoff(fn, max_retries: int = 5, sleep=time.sleep):
    for attempt in range(max_retries):
        try:
            return fn()
        except HttpError as e:
            if e.resp.status in (429, 500, 503) and attempt < max_retries - 1:
                logger.warning(f"Gmail API {e.resp.status}; retrying in {2 ** attempt}s")
                sleep(2 ** attempt)
                continue
            raise


def list_messages_page(
    service,
    label: str,
    after_ts: int,
    page_token: Optional[str] = None,
) -> dict:
    """One page of message refs for a label, newer than after_ts (unix seconds)."""
    kwargs = {
        "userId": "me",
        "q": f"after:{int(after_ts)}",
        "maxResults": settings.gmail_messages_max_results,
        "pageToken": page_token or None,
    }
    if label:
        kwargs["labelIds"] = [label]
    return _with_backoff(lambda: service.users().messages().list(**kwargs).execute())


def list_message_ids(service, label: str, after_ts: int) -> List[str]:
    """All message ids for label newer than after_ts. Paginated."""
    ids: List[str] = []
    seen: set[str] = set()
    page_token = None
    page_num = 0
    while True:
        page_num += 1
        result = list_messages_page(service, label, after_ts, page_token=page_token)
        for ref in result.get("messages", []) or []:
            mid = ref.get("id")
            if mid and mid not in seen:
                seen.add(mid)
                ids.append(mid)
        next_page_token = result.get("nextPageToken")
        if next_page_token is not None and next_page_token == page_token:
            logger.warning("Pagination stalled (repeated page token); stopping listing.")
            break
        page_token = next_page_token
        if page_num >= settings.gmail_max_pages:
            logger.warning("Pagination hit max page limit; stopping listing.")
            break
        if not page_token:
            break
    logger.info(f"Listed {len(ids)} messages for label={label or '*'} after={after_ts} ({page_num} pages)")
    return ids


def get_full_message(service, msg_id: str) -> dict:
    """Get full message by ID."""
    return _with_backoff(
        lambda: service.users()
        .messages()
        .get(userId="me", id=msg_id, format="full")
        .execute()
    )


def _decode(data: str) -> str:
    return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")


def _strip_html(raw: str) -> str:
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", " ", raw, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    return re.sub(r"\s+", " ", text).strip()


def _find_part(payload: dict, mime_type: str) -> Optional[str]:
    """Depth-first search for the first part of mime_type with data."""
    if payload.get("mimeType") == mime_type and payload.get("body", {}).get("data"):
        return _decode(payload["body"]["data"])
    for part in payload.get("parts", []) or []:
        found = _find_part(part, mime_type)
        if found is not None:
            return found
    return None


def _get_body(message: dict) -> str:
    payload = message.get("payload", {}) or {}
    plain = _find_part(payload, "text/plain")
    if plain:
        return plain.strip()
    rich = _find_part(payload, "text/html")
    if rich:
        return _strip_html(rich)
    # Single-part message without a declared text type
    if payload.get("body", {}).get("data"):
        return _decode(payload["body"]["data"]).strip()
    return html.unescape(message.get("snippet", "") or "")


def _get_headers(message: dict) -> dict:
    return {h["name"].lower(): h["value"] for h in message.get("payload", {}).get("headers", [])}


def parse_received_date(date_header: Optional[str]):
    if not date_header:
        return None
    try:
        return parsedate_to_datetime(date_header)
    except (TypeError, ValueError):
        return None


def email_to_parts(message: dict) -> tuple[str, str, str, str, str]:
    """Return (message_id, subject, sender, date_header, body)."""
    mid = message.get("id", "")
    headers = _get_headers(message)
    subject = headers.get("subject", "")
    sender = headers.get("from", "")
    date_header = headers.get("date", "")
    body = _get_body(message)
    return mid, subject, sender, date_header, body
