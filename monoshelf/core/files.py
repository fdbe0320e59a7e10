import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

EPUB_SUFFIX = ".epub"

class BookFile(ABC):
    """A user-supplied file whose bytes are read lazily."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def read_bytes(self) -> bytes:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

class LocalBookFile(BookFile):
    def __init__(self, path: Path):
        super().__init__(Path(path).name)
        self.path = Path(path)

    async def read_bytes(self) -> bytes:
        return await asyncio.to_thread(self.path.read_bytes)

class MemoryBookFile(BookFile):
    """Bytes already in memory, e.g. an HTTP upload."""

    def __init__(self, name: str, data: bytes):
        super().__init__(name)
        self.data = data

    async def read_bytes(self) -> bytes:
        return self.data

def is_epub_name(name: str) -> bool:
    return name.lower().endswith(EPUB_SUFFIX)

def pick_epub(files: Sequence[BookFile]) -> Optional[BookFile]:
    """First file with an .epub name, else the first file."""
    if not files:
        return None
    return next((f for f in files if is_epub_name(f.name)), files[0])
