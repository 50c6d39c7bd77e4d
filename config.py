from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ExportConfig:
    """
    导出/转换用到的全部固定参数。

    不读环境变量和配置文件；测试里用 dataclasses.replace 换掉路径和延时。
    """

    # 以 --remote-debugging-port=9222 启动的 Chrome
    chrome_debug_port: int = 9222
    site_domain: str = "penzu.com"
    api_base: str = "https://penzu.com/api"

    # 每条日记之间随机等待 2~3 秒
    min_delay_ms: int = 2000
    max_delay_ms: int = 3000

    # 429 重试：第 n 次重试前等待 n * 5 秒
    max_retries: int = 3
    retry_backoff_ms: int = 5000

    image_delay_ms: int = 500
    page_size: int = 10
    checkpoint_every: int = 10
    request_timeout: int = 60

    export_dir: Path = Path("exported-entries")
    images_subdir: str = "images"
    checkpoint_path: Path = Path("penzu-entries.json")
    enex_path: Path = Path("penzu-entries.enex")

    application_name: str = "Penzu Export"
    author: str = "Penzu Export"

    @property
    def images_dir(self) -> Path:
        return Path(self.export_dir) / self.images_subdir

    @property
    def debugger_url(self) -> str:
        return f"http://localhost:{self.chrome_debug_port}"

    def random_delay_seconds(self) -> float:
        return random.randint(self.min_delay_ms, self.max_delay_ms) / 1000.0

    def backoff_seconds(self, attempt: int) -> float:
        return attempt * self.retry_backoff_ms / 1000.0
