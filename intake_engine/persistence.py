"""
Save-point store for assessments.

Each explicit save writes one more JSON file per assessment; earlier
files are never rewritten, so the full history of save points stays on
disk. Field Store writes never reach this module.

Layout:
    <base_dir>/ASSESS-<id>/ASSESS-<id>_V-001.json
    <base_dir>/ASSESS-<id>/ASSESS-<id>_V-002.json
    ...
    <base_dir>/ASSESS-<id>/ASSESS-<id>_V-1000.json

The version in the file name is zero-padded to three digits and grows
past that; versions are always compared as integers.
"""

import json
import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from intake_engine.assessment import Assessment

logger = logging.getLogger(__name__)

_VERSION_FILE = re.compile(r"^ASSESS-(?P<id>.+)_V-(?P<version>\d+)\.json$")


def version_filename(assessment_id: str, version: int) -> str:
    """
    File name for one save point.
    
    Examples:
        >>> version_filename("abc", 7)
        'ASSESS-abc_V-007.json'
        >>> version_filename("abc", 1000)
        'ASSESS-abc_V-1000.json'
    """
    return f"ASSESS-{assessment_id}_V-{version:03d}.json"


def parse_version(filename: str, assessment_id: str) -> Optional[int]:
    """
    Version number encoded in a save-point file name.
    
    Returns None for files that belong to another assessment or do not
    follow the naming scheme.
    
    Examples:
        >>> parse_version("ASSESS-abc_V-1000.json", "abc")
        1000
        >>> parse_version("notes.json", "abc") is None
        True
    """
    match = _VERSION_FILE.match(filename)
    if match is None or match.group('id') != assessment_id:
        return None
    return int(match.group('version'))


class AssessmentPersistence:
    """Append-only, versioned JSON save points."""
    
    def __init__(self, base_dir: str = "outputs/assessments"):
        """
        Args:
            base_dir: Root directory holding one folder per assessment
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"AssessmentPersistence initialized: {self.base_dir}")
    
    # ========================
    # Private Helpers
    # ========================
    
    def _assessment_dir(self, assessment_id: str) -> Path:
        return self.base_dir / f"ASSESS-{assessment_id}"
    
    def _version_files(self, assessment_id: str) -> List[Tuple[int, Path]]:
        """(version, path) pairs sorted by version, oldest first."""
        assess_dir = self._assessment_dir(assessment_id)
        if not assess_dir.is_dir():
            return []
        
        found = []
        for path in assess_dir.glob("*.json"):
            version = parse_version(path.name, assessment_id)
            if version is None:
                logger.debug(f"Skipping unrecognised file {path.name}")
                continue
            found.append((version, path))
        return sorted(found)
    
    def _read(self, path: Path) -> Assessment:
        with open(path, 'r') as f:
            return Assessment.from_json(json.load(f))
    
    # ========================
    # Writes
    # ========================
    
    def save_version(self, assessment: Assessment) -> Assessment:
        """
        Write the next save point of an assessment.
        
        The new version is assessment.version + 1. It must be newer than
        every save point already on disk; anything else is a double-submit
        or an edit made on a stale copy.
        
        Args:
            assessment: Assessment as returned by AssessmentEngine.to_assessment()
        
        Returns:
            Assessment: Saved copy carrying its new version number
        
        Raises:
            FileExistsError: If the save point is not newer than the latest on disk
        """
        saved = assessment.next_version()
        
        latest = self.latest_version(saved.id)
        if saved.version <= latest:
            raise FileExistsError(
                f"Assessment {saved.id} already has version {latest}; "
                f"refusing to write version {saved.version} (double-submit or stale copy)"
            )
        
        assess_dir = self._assessment_dir(saved.id)
        assess_dir.mkdir(exist_ok=True)
        filepath = assess_dir / version_filename(saved.id, saved.version)
        
        # 'x' mode: a concurrent writer that got here first wins
        with open(filepath, 'x') as f:
            json.dump(saved.to_json(), f, indent=2, ensure_ascii=False)
        
        logger.info(f"Saved version {saved.version} of {saved.id}: {filepath.name}")
        return saved
    
    # ========================
    # Reads
    # ========================
    
    def list_versions(self, assessment_id: str) -> List[int]:
        """Saved version numbers, ascending (empty if none)."""
        return [version for version, _ in self._version_files(assessment_id)]
    
    def latest_version(self, assessment_id: str) -> int:
        """Highest saved version, 0 if the assessment was never saved."""
        versions = self.list_versions(assessment_id)
        return versions[-1] if versions else 0
    
    def load_version(self, assessment_id: str, version: int) -> Optional[Assessment]:
        """
        Load one specific save point.
        
        Returns:
            Assessment, or None if that version was never saved
        """
        for saved_version, path in self._version_files(assessment_id):
            if saved_version == version:
                return self._read(path)
        
        logger.warning(f"Version {version} of {assessment_id} not found")
        return None
    
    def load_latest(self, assessment_id: str) -> Optional[Assessment]:
        """
        Load the highest saved version.
        
        Returns:
            Assessment if any version exists, None otherwise
        """
        files = self._version_files(assessment_id)
        if not files:
            logger.warning(f"No saved versions for {assessment_id}")
            return None
        
        version, path = files[-1]
        logger.info(f"Loading version {version} of {assessment_id}: {path.name}")
        return self._read(path)
    
    def assessment_exists(self, assessment_id: str) -> bool:
        return bool(self._version_files(assessment_id))
    
    def get_version_count(self, assessment_id: str) -> int:
        return len(self._version_files(assessment_id))
