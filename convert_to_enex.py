import base64
import hashlib
import html
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from config import ExportConfig


logger = logging.getLogger(__name__)

ENEX_DATE_FMT = "%Y%m%dT%H%M%SZ"

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}


def load_entries(checkpoint_path: Path) -> List[Dict[str, Any]]:
    path = Path(checkpoint_path)
    if not path.exists():
        raise FileNotFoundError(f"Not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def mime_type_for(filename: str) -> str:
    ext = Path(filename).suffix[1:].lower()
    return MIME_TYPES.get(ext, "image/jpeg")


def format_enex_date(value: Optional[str]) -> Optional[str]:
    """ISO 时间 -> 20240131T083000Z（UTC）；解析不了返回 None"""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ENEX_DATE_FMT)


def escape_plaintext(text: Optional[str]) -> str:
    if not text:
        return ""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace("\n", "<br/>")


def _cdata(text: str) -> str:
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def embed_images(
    content: str,
    images: List[Dict[str, Any]],
    export_dir: Path,
) -> Tuple[str, List[Dict[str, str]]]:
    """
    把 <img src="原始 URL"> 换成 <en-media>，返回 (新正文, resources)。
    纯文本匹配：属性顺序或 URL 不完全一致的 img 不会被替换。
    """
    resources: List[Dict[str, str]] = []
    for image in images or []:
        image_path = Path(export_dir) / image["path"]
        if not image_path.exists():
            continue
        try:
            data = image_path.read_bytes()
        except OSError as e:
            logger.warning("[enex] could not embed image %s: %s", image.get("filename"), e)
            continue

        mime = mime_type_for(image["filename"])
        digest = hashlib.md5(data).hexdigest()
        pattern = re.compile(r'<img[^>]*src="' + re.escape(image["url"]) + r'"[^>]*>', re.IGNORECASE)
        content = pattern.sub(lambda _m: f'<en-media type="{mime}" hash="{digest}"/>', content)

        resources.append({
            "data": base64.b64encode(data).decode("ascii"),
            "mime": mime,
            "filename": image["filename"],
            "hash": digest,
        })
    return content, resources


def render_note(entry: Dict[str, Any], export_dir: Path, author: str) -> str:
    content = entry.get("richtext_body") or escape_plaintext(entry.get("plaintext") or entry.get("content"))
    content, resources = embed_images(content, entry.get("images") or [], export_dir)

    note_content = _cdata(
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<!DOCTYPE en-note SYSTEM "http://xml.evernote.com/pub/enml2.dtd">\n'
        f"<en-note>{content}</en-note>"
    )

    parts = [
        "\n  <note>",
        f"\n    <title>{html.escape(entry.get('title') or '')}</title>",
        f"\n    <content>{note_content}</content>",
    ]
    created = format_enex_date(entry.get("created_at"))
    if created:
        parts.append(f"\n    <created>{created}</created>")
    updated = format_enex_date(entry.get("updated_at"))
    if updated:
        parts.append(f"\n    <updated>{updated}</updated>")
    parts.append(
        "\n    <note-attributes>"
        f"\n      <author>{html.escape(author)}</author>"
        "\n    </note-attributes>"
    )

    for res in resources:
        parts.append(
            "\n    <resource>"
            f'\n      <data encoding="base64">{res["data"]}</data>'
            f"\n      <mime>{res['mime']}</mime>"
            "\n      <resource-attributes>"
            f"\n        <file-name>{html.escape(res['filename'])}</file-name>"
            "\n      </resource-attributes>"
            "\n    </resource>"
        )

    parts.append("\n  </note>\n")
    return "".join(parts)


def build_enex(
    entries: List[Dict[str, Any]],
    config: ExportConfig,
    export_date: Optional[datetime] = None,
) -> str:
    export_date = export_date or datetime.now(timezone.utc)
    header = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<!DOCTYPE en-export SYSTEM "http://xml.evernote.com/pub/evernote-export3.dtd">\n'
        f'<en-export export-date="{export_date.astimezone(timezone.utc).strftime(ENEX_DATE_FMT)}" '
        f'application="{html.escape(config.application_name)}" version="1.0">\n'
    )
    notes = [render_note(e, config.export_dir, config.author) for e in entries]
    return header + "".join(notes) + "</en-export>\n"


def convert_to_enex(config: ExportConfig, export_date: Optional[datetime] = None) -> Path:
    entries = load_entries(config.checkpoint_path)
    enex = build_enex(entries, config, export_date=export_date)

    out_path = Path(config.enex_path)
    out_path.write_text(enex, encoding="utf-8")
    logger.info("[enex] created %s with %d entries", out_path, len(entries))
    return out_path


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        convert_to_enex(ExportConfig())
        return 0
    except Exception as e:
        logger.error("ERROR: %s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
