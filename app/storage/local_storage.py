from __future__ import annotations

import pathlib


class LocalDiskStorage:
    """Writes artifacts under ``output_dir`` and serves them from ``base_url``."""

    def __init__(self, output_dir: str, base_url: str) -> None:
        self.output_dir = pathlib.Path(output_dir).resolve()
        self.base_url = (base_url or "").rstrip("/")

    def write_bytes(self, key: str, content: bytes) -> str:
        destination = self.path_for(key)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)
        return self.public_url(key)

    def path_for(self, key: str) -> pathlib.Path:
        parts = [part for part in key.split("/") if part and part not in (".", "..")]
        return self.output_dir.joinpath(*parts)

    def public_url(self, key: str) -> str:
        clean = "/".join(part for part in key.split("/") if part and part not in (".", ".."))
        return f"{self.base_url}/{clean}"
