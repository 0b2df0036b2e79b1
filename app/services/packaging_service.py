# app/services/packaging_service.py
from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import re
import secrets
import zipfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.core.clock import utcnow
from app.schemas.generation import GeneratedFile

logger = logging.getLogger(__name__)

GITIGNORE = """node_modules/
.next/
out/
dist/
.env
.env.local
*.log
.DS_Store
"""

ENV_EXAMPLE = """# Copy to .env.local and fill in
NEXT_PUBLIC_SOLANA_NETWORK=devnet
NEXT_PUBLIC_SOLANA_RPC_URL=https://api.devnet.solana.com
"""


class PackagingError(Exception):
    pass


@dataclass(frozen=True)
class PackageResult:
    token: str
    zip_location: str
    expires_at: datetime
    size_bytes: int
    sha256: str


def new_download_token() -> str:
    # 43 url-safe chars from 32 random bytes
    return secrets.token_urlsafe(32)


def _slug(name: str) -> str:
    s = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return s or "project"


def _safe_member(path: str) -> str:
    """
    Normalise a generated path into a relative archive member name.
    Absolute paths and parent traversal are rejected.
    """
    p = PurePosixPath(path.replace("\\", "/"))
    if p.is_absolute() or ".." in p.parts or not p.parts:
        raise PackagingError(f"unsafe file path in artifact: {path!r}")
    return str(p)


class Packager:
    """
    Builds the downloadable zip for an approved artifact and stores it under
    `download_dir`. Archives are named after the project slug and order id,
    so repackaging an order overwrites its previous zip.
    """
    def __init__(
        self,
        download_dir: str,
        *,
        ttl_hours: int = 48,
        now_fn: Callable[[], datetime] = utcnow,
    ):
        self.download_dir = Path(download_dir)
        self.ttl = timedelta(hours=ttl_hours)
        self.now_fn = now_fn

    def package(
        self,
        *,
        order_id: str,
        project_name: str,
        files: Iterable[GeneratedFile],
        package_manifest: Optional[Dict[str, Any]] = None,
        readme: Optional[str] = None,
    ) -> PackageResult:
        try:
            data = self.build_archive(
                project_name=project_name,
                files=files,
                package_manifest=package_manifest,
                readme=readme,
            )
        except (zipfile.BadZipFile, zipfile.LargeZipFile, TypeError, ValueError) as e:
            raise PackagingError(f"could not build package: {e}") from e

        target = self.download_dir / f"{_slug(project_name)}-{order_id}.zip"
        tmp = target.with_suffix(".zip.tmp")
        try:
            self.download_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as e:
            raise PackagingError(f"could not write package: {e}") from e

        result = PackageResult(
            token=new_download_token(),
            zip_location=str(target),
            expires_at=self.now_fn() + self.ttl,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
        )
        logger.info(
            "package created",
            extra={"order_id": order_id, "size_bytes": result.size_bytes, "sha256": result.sha256},
        )
        return result

    def build_archive(
        self,
        *,
        project_name: str,
        files: Iterable[GeneratedFile],
        package_manifest: Optional[Dict[str, Any]] = None,
        readme: Optional[str] = None,
    ) -> bytes:
        root = _slug(project_name)
        written: List[str] = []
        buf = io.BytesIO()

        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            def add(name: str, content: str) -> None:
                if name in written:
                    return
                zf.writestr(f"{root}/{name}", content)
                written.append(name)

            for f in files:
                add(_safe_member(f.path), f.content)

            if package_manifest:
                add("package.json", json.dumps(package_manifest, indent=2))
            add("README.md", readme or f"# {project_name}\n")
            add(".gitignore", GITIGNORE)
            add(".env.example", ENV_EXAMPLE)

        return buf.getvalue()

    def read(self, zip_location: str) -> bytes:
        try:
            return Path(zip_location).read_bytes()
        except OSError as e:
            raise PackagingError(f"package missing: {zip_location}") from e

    def cleanup_expired_files(self, *, retention_hours: Optional[int] = None) -> int:
        """
        Deletes stored archives older than the retention window (defaults to the
        download TTL). Returns how many files were removed.
        """
        if not self.download_dir.exists():
            return 0

        window = timedelta(hours=retention_hours) if retention_hours is not None else self.ttl
        cutoff = (self.now_fn() - window).timestamp()
        removed = 0

        for p in self.download_dir.glob("*.zip"):
            try:
                if p.stat().st_mtime < cutoff:
                    p.unlink()
                    removed += 1
            except OSError:
                logger.warning("could not remove expired package", extra={"path": str(p)})

        if removed:
            logger.info("expired packages removed", extra={"count": removed})
        return removed
