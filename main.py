from __future__ import annotations

import logging

from browser_session import read_browser_auth
from config import ExportConfig
from convert_to_enex import convert_to_enex
from fetch_data import ApiError, PenzuClient, export_entries, resolve_start_entry


logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    config = ExportConfig()
    try:
        # 1) 从调试中的 Chrome 读取 journal id 和 OAuth 凭据
        auth = read_browser_auth(config)

        # 2) 逐条抓取日记 + 图片，写 txt 和 JSON
        client = PenzuClient(auth, config)
        try:
            start_entry_id = resolve_start_entry(client, auth)
            entries = export_entries(client, start_entry_id, config)
        finally:
            client.close()
        logger.info("[export] all entries saved to %s/", config.export_dir)

        # 3) JSON -> ENEX
        if entries:
            out_path = convert_to_enex(config)
            logger.info("All done. Output: %s", out_path)
        return 0

    except ApiError as e:
        logger.error("ERROR: %s", e)
        logger.error("Response status: %s", e.status_code)
        logger.error("Response data: %s", e.body)
        return 1
    except Exception as e:
        logger.error("ERROR: %s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
