import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from playwright.sync_api import sync_playwright

from config import ExportConfig


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrowserAuth:
    journal_id: str
    entry_id: Optional[str]
    consumer_key: str
    consumer_secret: Optional[str]
    token: str
    token_secret: Optional[str]
    cookie_header: str
    user_agent: str


def parse_page_ids(url: str) -> Tuple[Optional[str], Optional[str]]:
    """
    https://penzu.com/p/JOURNAL_ID 或 https://penzu.com/p/JOURNAL_ID/ENTRY_ID
    返回 (journal_id, entry_id)；"new"（新建日记页）当作没有 entry_id
    """
    parts = urlparse(url).path.split("/")
    journal_id = parts[2] if len(parts) > 2 and parts[2] else None
    entry_id = parts[3] if len(parts) > 3 and parts[3] else None
    if entry_id == "new":
        entry_id = None
    return journal_id, entry_id


def parse_pz_session(raw: Optional[str]) -> Dict[str, Optional[str]]:
    creds: Dict[str, Optional[str]] = {
        "consumer_key": None,
        "consumer_secret": None,
        "token": None,
        "token_secret": None,
    }
    if not raw:
        return creds
    try:
        session = json.loads(raw)
    except ValueError:
        return creds
    if not isinstance(session, dict):
        return creds

    access_token = session.get("access_token") or {}
    app = access_token.get("client_application") or {}
    creds["consumer_key"] = app.get("key")
    creds["consumer_secret"] = app.get("secret")
    creds["token"] = access_token.get("token")
    creds["token_secret"] = access_token.get("secret")
    return creds


def cookies_to_header(cookies: List[Dict]) -> str:
    return "; ".join(f"{c['name']}={c['value']}" for c in cookies)


def read_browser_auth(config: ExportConfig) -> BrowserAuth:
    """
    连接已登录的 Chrome（远程调试端口），只读取：
      - 页面 URL 里的 journal/entry id
      - localStorage['pz-session'] 里的 OAuth 凭据
      - cookies 和 userAgent
    """
    logger.info("[browser] connecting to Chrome debugger at %s", config.debugger_url)
    with sync_playwright() as p:
        browser = p.chromium.connect_over_cdp(config.debugger_url)

        page = None
        for context in browser.contexts:
            for candidate in context.pages:
                if config.site_domain in candidate.url:
                    page = candidate
                    break
            if page is not None:
                break

        if page is None:
            raise RuntimeError(
                f"No {config.site_domain} page found. Open Penzu in the debugging Chrome window."
            )

        journal_id, entry_id = parse_page_ids(page.url)
        if not journal_id:
            raise RuntimeError(
                "Could not extract journal ID. Open a journal page such as "
                f"https://{config.site_domain}/p/YOUR_JOURNAL_ID"
            )
        logger.info("[browser] journal id: %s", journal_id)
        if entry_id:
            logger.info("[browser] entry id: %s", entry_id)
        else:
            logger.info("[browser] no entry open, latest entry will be looked up")

        raw_session = page.evaluate("() => window.localStorage.getItem('pz-session')")
        user_agent = page.evaluate("() => navigator.userAgent")
        # 只取当前 Penzu 页面的 cookie，不带上整个 profile
        cookie_header = cookies_to_header(page.context.cookies(page.url))

    creds = parse_pz_session(raw_session)
    if not creds["token"] or not creds["consumer_key"]:
        raise RuntimeError("No OAuth credentials found. Log in to Penzu in the debugging Chrome window.")
    logger.info("[browser] found OAuth credentials")

    return BrowserAuth(
        journal_id=journal_id,
        entry_id=entry_id,
        consumer_key=creds["consumer_key"],
        consumer_secret=creds["consumer_secret"],
        token=creds["token"],
        token_secret=creds["token_secret"],
        cookie_header=cookie_header,
        user_agent=user_agent,
    )
