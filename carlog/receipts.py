"""Receipt upload batches and the client-side size limit."""

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .errors import ReceiptTooLargeError
from .service_entry import Receipt

MAX_RECEIPT_BYTES = 5 * 1024 * 1024


@dataclass
class ReceiptFile:
    """A file picked for upload, not yet stored."""

    name: str
    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Union[str, Path], mime_type: Optional[str] = None) -> "ReceiptFile":
        path = Path(path)
        if mime_type is None:
            mime_type = guess_mime_type(path.name)
        return cls(name=path.name, data=path.read_bytes(), mime_type=mime_type)


@dataclass
class UploadReport:
    """Outcome of one batch of receipt uploads."""

    uploaded: List[Receipt] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "application/octet-stream"


def check_receipt_sizes(files: Iterable[ReceiptFile], limit: int = MAX_RECEIPT_BYTES) -> None:
    """Reject the batch before any upload if one file is over the limit."""
    for f in files:
        if f.size > limit:
            raise ReceiptTooLargeError(f.name, f.size, limit)
