"""
Cloud backup mirror.

Uploads, lists and prunes backup archives under an ``s3://bucket/prefix``
location through the AWS CLI. Cloud operations are best effort from the
caller's point of view: a local backup is complete without them.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..exceptions import BackupError

logger = logging.getLogger(__name__)


@dataclass
class CloudObject:
    """One line of ``aws s3 ls --recursive`` output."""
    date: str
    time: str
    size: int
    key: str

    @property
    def sort_key(self) -> str:
        return f"{self.date} {self.time}|{self.key}"


class CloudStorage:
    """
    Thin wrapper over ``aws s3`` for one backup location.

    Args:
        location: ``s3://bucket/prefix`` URI
        max_backups: Objects retained by cleanup()
        aws_cli: Name or path of the AWS CLI executable
        runner: subprocess.run compatible callable (replaced in tests)
    """

    def __init__(
        self,
        location: str,
        max_backups: int = 90,
        aws_cli: str = "aws",
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ):
        if not location.startswith("s3://"):
            raise BackupError(f"Cloud backup location must be an s3:// URI: {location}")
        self.location = location.rstrip("/")
        self.max_backups = max_backups
        self.aws_cli = aws_cli
        self.runner = runner or subprocess.run

    @property
    def bucket(self) -> str:
        return self.location[len("s3://"):].split("/", 1)[0]

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        command = [self.aws_cli, "s3", *args]
        logger.debug(f"Running: {' '.join(command)}")
        try:
            return self.runner(command, capture_output=True, text=True, check=False)
        except OSError as e:
            raise BackupError(f"AWS CLI not available: {e}") from e

    def upload(self, path: Path) -> str:
        """Copy a local archive to the cloud location; return its URI."""
        destination = f"{self.location}/{Path(path).name}"
        result = self._run(["cp", str(path), f"{self.location}/", "--quiet"])
        if result.returncode != 0:
            raise BackupError(f"Cloud upload failed: {result.stderr.strip()}")
        logger.info(f"Uploaded to cloud: {destination}")
        return destination

    def list_objects(self) -> List[CloudObject]:
        """Objects under the location, oldest first."""
        result = self._run(["ls", f"{self.location}/", "--recursive"])
        if result.returncode != 0:
            # aws exits non-zero for an empty prefix
            logger.debug(f"Cloud listing returned {result.returncode}: {result.stderr.strip()}")
            return []

        objects = []
        for line in result.stdout.splitlines():
            parts = line.split(None, 3)
            if len(parts) != 4 or not parts[2].isdigit():
                continue
            objects.append(CloudObject(date=parts[0], time=parts[1], size=int(parts[2]), key=parts[3]))
        objects.sort(key=lambda o: o.sort_key)
        return objects

    def cleanup(self, keep: Optional[int] = None, dry_run: bool = False) -> List[str]:
        """
        Delete all but the *keep* newest objects.

        Returns:
            Object URIs deleted (or that would be deleted)
        """
        keep = self.max_backups if keep is None else keep
        objects = self.list_objects()
        stale = objects[:-keep] if keep else objects

        removed = []
        for obj in stale:
            uri = f"s3://{self.bucket}/{obj.key}"
            if dry_run:
                logger.info(f"Would delete cloud backup: {uri}")
            else:
                result = self._run(["rm", uri])
                if result.returncode != 0:
                    logger.warning(f"Failed to delete cloud backup {uri}: {result.stderr.strip()}")
                    continue
                logger.info(f"Deleted old cloud backup: {obj.key}")
            removed.append(uri)
        return removed
