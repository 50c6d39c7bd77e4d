"""
Shared pytest fixtures: a temp-dir config, fake browser auth and a fake client.
"""
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import requests

from browser_session import BrowserAuth
from config import ExportConfig


@pytest.fixture
def config(tmp_path: Path) -> ExportConfig:
    return replace(
        ExportConfig(),
        export_dir=tmp_path / "exported-entries",
        checkpoint_path=tmp_path / "penzu-entries.json",
        enex_path=tmp_path / "penzu-entries.enex",
    )


@pytest.fixture
def auth() -> BrowserAuth:
    return BrowserAuth(
        journal_id="J1",
        entry_id=None,
        consumer_key="ck",
        consumer_secret="cs",
        token="tok",
        token_secret="ts",
        cookie_header="a=1; b=2",
        user_agent="pytest-agent",
    )


@pytest.fixture
def sleeps(monkeypatch) -> List[float]:
    """Record time.sleep calls made by the exporter instead of sleeping."""
    calls: List[float] = []
    monkeypatch.setattr("fetch_data.time.sleep", calls.append)
    return calls


def make_page(entry_id: str, previous_ids: List[str], **fields) -> Dict:
    entry = {"id": entry_id, "title": f"Entry {entry_id}", "created_at": "2024-01-31T08:30:00Z"}
    entry.update(fields)
    return {
        "entry": entry,
        "previous": [{"entry": {"id": pid}} for pid in previous_ids],
    }


def make_chain(k: int) -> Dict[str, Dict]:
    """k pages e1 -> e2 -> ... -> ek, the last one with no predecessor."""
    pages = {}
    for i in range(1, k + 1):
        prev = [f"e{j}" for j in range(i + 1, min(i + 4, k + 1))]
        pages[f"e{i}"] = make_page(f"e{i}", prev)
    return pages


class FakeClient:
    def __init__(self, pages: Dict[str, Dict], images: Optional[Dict[str, bytes]] = None):
        self.pages = pages
        self.images = images or {}
        self.fetched: List[str] = []
        self.downloaded: List[str] = []

    def fetch_entry(self, entry_id: str) -> Dict:
        self.fetched.append(entry_id)
        return self.pages[entry_id]

    def download_image(self, url: str, dest: Path) -> None:
        self.downloaded.append(url)
        if url not in self.images:
            raise requests.HTTPError(f"404 Not Found: {url}")
        Path(dest).write_bytes(self.images[url])
