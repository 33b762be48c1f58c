"""
Static content resolution with live-reload injection for HTML pages.
"""

import asyncio
import mimetypes
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import structlog

from liveserver.document import parse_bytes, serialize
from liveserver.errors import MissingHeadError, NotFoundError, ParseError
from liveserver.injector import inject as inject_script

logger = structlog.get_logger(__name__)

# Path the injected <script> loads; served by the server itself.
DEFAULT_SCRIPT_PATH = "/__livereload.js"

INDEX_FILE = "index.html"
HTML_CONTENT_TYPE = "text/html"


@dataclass
class Resolved:
    """A resolved response body."""
    path: Path
    content_type: str
    body: bytes
    injected: bool = False


class ContentResolver:
    """
    Maps request paths below ``root`` to response bodies.

    Blocking reads run on ``executor`` (the loop's default executor when
    None) so a slow disk never stalls the event loop.
    """

    def __init__(
        self,
        root: Union[str, Path],
        script_path: str = DEFAULT_SCRIPT_PATH,
        inject: bool = True,
        executor: Optional[Executor] = None,
    ):
        self.root = Path(root).resolve()
        self.script_path = script_path
        self.inject = inject
        self.executor = executor

    def locate(self, path: str) -> Path:
        """
        Turn a decoded request path into a file below root.

        Directories fall back to their index.html. Anything missing, not a
        regular file, outside root, or not a valid file name (embedded NUL,
        too long) raises NotFoundError.
        """
        relative = path.lstrip("/")
        try:
            candidate = (self.root / relative).resolve()

            if candidate != self.root and self.root not in candidate.parents:
                logger.warning("Rejected path outside root", path=path)
                raise NotFoundError(path)

            if candidate.is_dir():
                candidate = candidate / INDEX_FILE

            if not candidate.is_file():
                raise NotFoundError(path)
        except (OSError, ValueError) as e:
            logger.info("Unusable path", path=path[:200], error=str(e))
            raise NotFoundError(path) from e

        return candidate

    def _read(self, path: str) -> Tuple[Path, bytes]:
        file_path = self.locate(path)
        try:
            return file_path, file_path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, PermissionError) as e:
            raise NotFoundError(path) from e

    async def resolve(self, path: str, inject: bool = True) -> Resolved:
        """Resolve ``path`` to (content type, bytes), injecting into HTML."""
        loop = asyncio.get_running_loop()
        file_path, data = await loop.run_in_executor(self.executor, self._read, path)

        if file_path.suffix.lower() in (".html", ".htm") and self.inject and inject:
            body, injected = self.render_html(data, file_path)
            return Resolved(file_path, HTML_CONTENT_TYPE, body, injected)

        content_type, _ = mimetypes.guess_type(file_path.name)
        return Resolved(file_path, content_type or "application/octet-stream", data)

    def render_html(self, data: bytes, file_path: Optional[Path] = None) -> Tuple[bytes, bool]:
        """
        Inject the live-reload script into an HTML body.

        Unparseable pages and pages without a head are served unmodified.
        """
        try:
            document = parse_bytes(data)
            inject_script(document, self.script_path)
        except (ParseError, MissingHeadError) as e:
            logger.warning("Serving HTML without live reload", path=str(file_path), reason=str(e))
            return data, False

        return serialize(document).encode("utf-8"), True
