"""
sealink.storage
按标识符读取本地资源。标识符写成类似文件路径的形式（如 /helloworld.txt），
解析后必须仍位于根目录之内，否则视为不存在。
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class DirectoryStorage:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        if not self.root.is_dir():
            raise ValueError(f"not a directory: {self.root}")

    def resolve(self, identifier: str) -> Optional[Path]:
        if not identifier or "\x00" in identifier:
            return None
        path = (self.root / identifier.lstrip("/")).resolve()
        try:
            path.relative_to(self.root)
        except ValueError:
            logger.warning("rejected identifier outside served directory: %r", identifier)
            return None
        return path

    def lookup(self, identifier: str) -> Optional[bytes]:
        path = self.resolve(identifier)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()
