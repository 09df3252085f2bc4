"""
Asset sinks for fonts, images and stylesheets.

Assets are content addressed (sha256 of the bytes) so identical fonts or
images shared by several pages are written once.
"""

import hashlib
import logging
import os
from typing import Dict, List, Optional, Protocol

from folio.utils.image_codec import MIME_BY_EXTENSION, to_data_uri
from folio.utils.resource_limits import OutputBudget

logger = logging.getLogger(__name__)


def asset_name(data: bytes, extension: str) -> str:
    return f"{hashlib.sha256(data).hexdigest()}.{extension}"


def mime_for(extension: str) -> str:
    return MIME_BY_EXTENSION.get(extension, "application/octet-stream")


class AssetSink(Protocol):
    budget: OutputBudget

    @property
    def names(self) -> List[str]:
        """Names of the assets written so far, in write order."""
        ...

    def write(self, data: bytes, extension: str) -> str:
        """Store ``data`` and return the name it can be referenced by."""
        ...


class MemoryAssetSink:
    """Keeps assets in a dict; used by the HTTP layer and tests."""

    def __init__(self, budget: Optional[OutputBudget] = None):
        self.assets: Dict[str, bytes] = {}
        self.budget = budget or OutputBudget()

    @property
    def names(self) -> List[str]:
        return list(self.assets)

    def write(self, data: bytes, extension: str) -> str:
        name = asset_name(data, extension)
        if name not in self.assets:
            self.budget.charge(len(data), name)
            self.assets[name] = data
        return name


class DirectoryAssetSink:
    """Writes assets next to the HTML output."""

    def __init__(self, dest_dir: str, budget: Optional[OutputBudget] = None):
        self.dest_dir = dest_dir
        self.budget = budget or OutputBudget()
        self.written: Dict[str, int] = {}
        os.makedirs(dest_dir, exist_ok=True)

    @property
    def names(self) -> List[str]:
        return list(self.written)

    def write(self, data: bytes, extension: str) -> str:
        name = asset_name(data, extension)
        if name in self.written:
            return name
        self.budget.charge(len(data), name)
        path = os.path.join(self.dest_dir, name)
        if not os.path.exists(path):
            with open(path, 'wb') as f:
                f.write(data)
            logger.debug(f"Wrote asset {name} ({len(data)} bytes)")
        self.written[name] = len(data)
        return name


def reference_asset(sink: AssetSink, data: bytes, extension: str, inline: bool) -> str:
    """Data URI when ``inline``, otherwise the name returned by the sink."""
    if inline:
        sink.budget.charge(len(data), f"inline {extension}")
        return to_data_uri(data, mime_for(extension))
    return sink.write(data, extension)
