import json
import logging
import posixpath
import re
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests
from requests_oauthlib import OAuth1

from browser_session import BrowserAuth
from config import ExportConfig


logger = logging.getLogger(__name__)

IMG_SRC_RE = re.compile(r'<img[^>]+src="([^"]+)"', re.IGNORECASE)


class ApiError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PenzuClient:
    """
    Penzu 内部 API 客户端。

    API 请求用 OAuth 1.0a (HMAC-SHA256) 签名，并带上浏览器的 cookie / UA；
    图片只带 cookie / UA / Referer。
    """

    def __init__(self, auth: BrowserAuth, config: ExportConfig, session: Optional[requests.Session] = None):
        self.auth = auth
        self.config = config
        self.journal_id = auth.journal_id
        self.session = session or requests.Session()
        self.session.headers.update({
            "user-agent": auth.user_agent,
            "referer": f"https://{config.site_domain}/journals/{auth.journal_id}",
        })
        if auth.cookie_header:
            self.session.headers["cookie"] = auth.cookie_header
        self.oauth = OAuth1(
            auth.consumer_key,
            client_secret=auth.consumer_secret,
            resource_owner_key=auth.token,
            resource_owner_secret=auth.token_secret,
            signature_method="HMAC-SHA256",
        )
        self.api_headers = {
            "accept": "application/json, text/plain, */*",
            "accept-language": "en-US,en;q=0.9",
            "x-xsrf-protection": "0",
        }

    def close(self) -> None:
        self.session.close()

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        retry = 0
        while True:
            r = self.session.get(
                url,
                params=params,
                headers=self.api_headers,
                auth=self.oauth,
                timeout=self.config.request_timeout,
            )
            if r.status_code == 429 and retry < self.config.max_retries:
                retry += 1
                backoff = self.config.backoff_seconds(retry)
                logger.warning(
                    "    rate limited (429), waiting %ss before retry %d/%d",
                    backoff, retry, self.config.max_retries,
                )
                time.sleep(backoff)
                continue
            if not 200 <= r.status_code < 300:
                raise ApiError(f"GET {url} failed, status={r.status_code}", r.status_code, r.text)
            return r.json()

    def get_latest_entry_id(self) -> str:
        data = self._get_json(f"{self.config.api_base}/journals/{self.journal_id}")
        latest = ((data or {}).get("journal") or {}).get("last_entry_id")
        if not latest:
            raise RuntimeError("Could not find latest entry ID. Open a journal entry in the browser.")
        return str(latest)

    def fetch_entry(self, entry_id: str) -> Dict[str, Any]:
        url = f"{self.config.api_base}/journals/{self.journal_id}/entries/{entry_id}"
        params = {"next": self.config.page_size, "previous": self.config.page_size}
        return self._get_json(url, params=params)

    def download_image(self, url: str, dest: Path) -> None:
        with self.session.get(url, stream=True, timeout=self.config.request_timeout) as r:
            r.raise_for_status()
            try:
                with open(dest, "wb") as f:
                    for chunk in r.iter_content(chunk_size=1024 * 128):
                        if chunk:
                            f.write(chunk)
            except (requests.RequestException, OSError):
                # 不留下写了一半的图片
                Path(dest).unlink(missing_ok=True)
                raise


def resolve_start_entry(client: PenzuClient, auth: BrowserAuth) -> str:
    if auth.entry_id:
        return auth.entry_id
    logger.info("[export] fetching journal info to get latest entry...")
    latest = client.get_latest_entry_id()
    logger.info("[export] latest entry id: %s", latest)
    return latest


def previous_entry_id(data: Dict[str, Any]) -> Optional[str]:
    # 只跟随 previous 窗口里最近的一条
    previous = data.get("previous")
    if not isinstance(previous, list) or not previous:
        return None
    entry = (previous[0] or {}).get("entry") or {}
    return entry.get("id")


def walk_entries(
    client: PenzuClient,
    start_entry_id: str,
    config: ExportConfig,
) -> Iterator[Tuple[int, Dict[str, Any]]]:
    """
    从 start_entry_id 开始往前走链表，惰性产出 (序号, API 返回的 entry)。
    previous 为空即结束；两次请求之间随机等待。
    """
    current: Optional[str] = start_entry_id
    seq = 0
    while current:
        seq += 1
        logger.info("[%d] Fetching entry: %s", seq, current)
        data = client.fetch_entry(current)
        yield seq, data.get("entry") or {}

        current = previous_entry_id(data)
        if current:
            time.sleep(config.random_delay_seconds())


def build_entry_record(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": entry.get("id"),
        "title": entry.get("title") or "Untitled",
        "content": entry.get("content") or entry.get("plaintext_body") or entry.get("richtext_body") or "",
        "plaintext": entry.get("plaintext_body") or "",
        "richtext_body": entry.get("richtext_body") or "",
        "created_at": entry.get("created_at"),
        "updated_at": entry.get("modified_at") or entry.get("updated_at"),
        "images": [],
    }


def extract_image_urls(richtext: str) -> List[str]:
    return IMG_SRC_RE.findall(richtext or "")


def sanitize_filename(s: str) -> str:
    s = re.sub(r"[^A-Za-z0-9]", "_", s)
    s = re.sub(r"_+", "_", s)
    return s[:50]


def image_filename(seq: int, entry_id: Any, url: str) -> str:
    base = posixpath.basename(url.split("?")[0]) or "image"
    return f"{seq:04d}_{entry_id}_{base}"


def download_entry_images(
    client: PenzuClient,
    seq: int,
    record: Dict[str, Any],
    config: ExportConfig,
) -> None:
    for url in extract_image_urls(record["richtext_body"]):
        filename = image_filename(seq, record["id"], url)
        dest = config.images_dir / filename
        try:
            client.download_image(url, dest)
        except (requests.RequestException, OSError) as e:
            logger.warning("    [image] failed to download (%s): %s", e, url)
            continue

        record["images"].append({
            "url": url,
            "filename": filename,
            "path": f"{config.images_subdir}/{filename}",
        })
        logger.info("    [image] downloaded: %s", filename)
        time.sleep(config.image_delay_ms / 1000.0)


def entry_text_filename(seq: int, record: Dict[str, Any]) -> str:
    created = record.get("created_at")
    date_str = created[:10] if created else "unknown"
    return f"{seq:04d}_{date_str}_{sanitize_filename(record['title'])}.txt"


def render_entry_text(record: Dict[str, Any]) -> str:
    created = record.get("created_at") or "unknown"
    text = f"Title: {record['title']}\nDate: {created}\n"
    if record["images"]:
        lines = "\n".join(f"  - {img['path']}" for img in record["images"])
        text += f"\nImages:\n{lines}\n"
    text += f"\n{record['content']}"
    return text


def write_checkpoint(entries: List[Dict[str, Any]], path: Path) -> None:
    Path(path).write_text(json.dumps(entries, indent=2, ensure_ascii=False), encoding="utf-8")


def export_entries(
    client: PenzuClient,
    start_entry_id: str,
    config: ExportConfig,
) -> List[Dict[str, Any]]:
    """
    抓取全部日记：
      - 每条立即写一个 txt
      - 每 checkpoint_every 条整体覆盖一次 JSON，结束时再写一次
    """
    export_dir = Path(config.export_dir)
    export_dir.mkdir(parents=True, exist_ok=True)
    config.images_dir.mkdir(parents=True, exist_ok=True)

    entries: List[Dict[str, Any]] = []
    for seq, entry in walk_entries(client, start_entry_id, config):
        record = build_entry_record(entry)
        if record["richtext_body"]:
            download_entry_images(client, seq, record, config)

        entries.append(record)

        filename = entry_text_filename(seq, record)
        (export_dir / filename).write_text(render_entry_text(record), encoding="utf-8")
        logger.info("    saved: %s", filename)

        if seq % config.checkpoint_every == 0:
            write_checkpoint(entries, config.checkpoint_path)
            logger.info("    [checkpoint] backup saved (%d entries)", seq)

    logger.info("[export] exported %d entries", len(entries))
    write_checkpoint(entries, config.checkpoint_path)
    logger.info("[checkpoint] final save to %s", config.checkpoint_path)
    return entries
