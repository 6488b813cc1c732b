"""
Profile Store Module

Holds the enrolled reference profiles for the running application and
manages the profile directory they are loaded from. The directory is the
only persisted state: one image per profile, named by joining the lowercased
name tokens with a separator (``jane_doe.jpg`` <-> "Jane Doe").
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List

import cv2
import numpy as np

from .errors import EnrollmentLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ReferenceProfile:
    """An enrolled identity and its reference descriptor."""

    id: str
    display_name: str
    descriptor: np.ndarray


def display_name_from_source(source_id: str, separator: str = '_') -> str:
    """
    Derive a display name from a profile source identifier.

    Args:
        source_id: Source file name, e.g. ``jane_doe.jpg``
        separator: Token separator used in file names

    Returns:
        Display name, e.g. ``Jane Doe``
    """
    stem = Path(source_id).stem
    tokens = [token for token in stem.split(separator) if token]
    return ' '.join(token.capitalize() for token in tokens)


def source_name_for(display_name: str, separator: str = '_', extension: str = '.jpg') -> str:
    """
    Build the profile file name for a display name.

    Args:
        display_name: Person name as typed, e.g. ``Jane Doe``
        separator: Token separator used in file names
        extension: Image file extension

    Returns:
        File name, e.g. ``jane_doe.jpg``
    """
    tokens = [token.lower() for token in display_name.split() if token]
    if not tokens:
        raise ValueError("Display name cannot be empty")
    return separator.join(tokens) + extension


class ProfileDirectory:
    """Enrollment collaborator backed by a directory of profile images."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize profile directory.

        Args:
            config: Configuration dictionary with storage settings
        """
        self.storage_config = config.get('storage', {})
        self.profiles_dir = Path(self.storage_config.get('profiles_dir', 'data/faces'))
        self.extensions = {ext.lower() for ext in
                           self.storage_config.get('image_extensions', ['.jpg', '.jpeg', '.png'])}
        self.separator = self.storage_config.get('name_separator', '_')

    def list_enrollable_images(self) -> List[str]:
        """List profile image names in a stable (sorted) order."""
        if not self.profiles_dir.is_dir():
            raise EnrollmentLoadError(str(self.profiles_dir), "profile directory does not exist")

        return sorted(
            entry.name for entry in self.profiles_dir.iterdir()
            if entry.is_file() and entry.suffix.lower() in self.extensions
        )

    def fetch_image(self, source_id: str) -> np.ndarray:
        """Read a profile image as a BGR array."""
        image = cv2.imread(str(self.profiles_dir / source_id))
        if image is None:
            raise EnrollmentLoadError(source_id, "image could not be read")
        return image

    def save_image(self, image: np.ndarray, display_name: str) -> str:
        """
        Persist an enrollment photo under the name-derived file name.
        An existing photo for the same name is replaced.

        Args:
            image: Captured BGR image
            display_name: Person name

        Returns:
            Source identifier of the saved profile
        """
        source_id = source_name_for(display_name, self.separator)
        os.makedirs(self.profiles_dir, exist_ok=True)
        path = self.profiles_dir / source_id
        if path.exists():
            logger.warning(f"Replacing existing profile image {source_id} for {display_name}")

        if not cv2.imwrite(str(path), image):
            raise OSError(f"Failed to write profile image {source_id}")

        logger.info(f"Saved profile image {source_id} for {display_name}")
        return source_id

    def delete(self, source_id: str) -> bool:
        """Remove a profile image. Returns False if it did not exist."""
        path = self.profiles_dir / source_id
        if not path.is_file():
            return False
        path.unlink()
        logger.info(f"Deleted profile image {source_id}")
        return True


class ProfileStore:
    """In-memory set of reference profiles for one application run."""

    def __init__(self, enrollment, extractor, config: Dict[str, Any]):
        """
        Initialize profile store.

        Args:
            enrollment: Collaborator providing list_enrollable_images() and fetch_image()
            extractor: Descriptor extractor with an async detect() method
            config: Configuration dictionary
        """
        self.enrollment = enrollment
        self.extractor = extractor
        self.embedding_size = config.get('embedding', {}).get('embedding_size', 128)
        self.separator = config.get('storage', {}).get('name_separator', '_')

        self._profiles: List[ReferenceProfile] = []
        self.load_errors: List[EnrollmentLoadError] = []
        self._readers = 0

    @property
    def profiles(self) -> List[ReferenceProfile]:
        return list(self._profiles)

    @property
    def is_empty(self) -> bool:
        return not self._profiles

    @property
    def degraded(self) -> bool:
        return bool(self.load_errors)

    @property
    def in_use(self) -> bool:
        return self._readers > 0

    def __len__(self) -> int:
        return len(self._profiles)

    def __iter__(self) -> Iterator[ReferenceProfile]:
        return iter(self.profiles)

    async def load(self) -> List[ReferenceProfile]:
        """
        Build reference profiles from every enrollable image.

        Images must contain exactly one face. Anything else is skipped and
        recorded in ``load_errors``; an empty result is not an error.

        Returns:
            Loaded profiles in enrollment order
        """
        profiles: List[ReferenceProfile] = []
        errors: List[EnrollmentLoadError] = []

        try:
            source_ids = list(self.enrollment.list_enrollable_images())
        except EnrollmentLoadError as e:
            logger.error(f"Failed to list enrolled images: {e}")
            source_ids = []
            errors.append(e)
        except OSError as e:
            logger.error(f"Failed to list enrolled images: {e}")
            source_ids = []
            errors.append(EnrollmentLoadError('<profiles>', str(e)))

        for source_id in source_ids:
            try:
                profile = await self._load_profile(source_id)
            except EnrollmentLoadError as e:
                logger.warning(f"Skipping enrolled image {e}")
                errors.append(e)
                continue
            profiles.append(profile)
            logger.debug(f"Loaded profile {profile.display_name} from {source_id}")

        self._profiles = profiles
        self.load_errors = errors

        if profiles:
            logger.info(f"Loaded {len(profiles)} profile(s), {len(errors)} skipped")
        else:
            logger.warning("No profiles loaded, the store is empty")
        return self.profiles

    async def reload(self) -> List[ReferenceProfile]:
        """Reload all profiles. Not allowed while a session is reading the store."""
        if self.in_use:
            raise RuntimeError("Cannot reload profiles while detection is running")
        return await self.load()

    @contextmanager
    def reading(self) -> Iterator[List[ReferenceProfile]]:
        """Hold a snapshot of the profiles; reload() is refused meanwhile."""
        self._readers += 1
        try:
            yield self.profiles
        finally:
            self._readers -= 1

    async def _load_profile(self, source_id: str) -> ReferenceProfile:
        try:
            image = self.enrollment.fetch_image(source_id)
            faces = await self.extractor.detect(image)
        except EnrollmentLoadError:
            raise
        except Exception as e:
            raise EnrollmentLoadError(source_id, f"descriptor extraction failed: {e}") from e

        if not faces:
            raise EnrollmentLoadError(source_id, "no face detected")
        if len(faces) > 1:
            raise EnrollmentLoadError(source_id, f"{len(faces)} faces detected, expected one")

        descriptor = np.asarray(faces[0].descriptor, dtype=np.float64).reshape(-1)
        if descriptor.shape[0] != self.embedding_size:
            raise EnrollmentLoadError(
                source_id,
                f"descriptor size {descriptor.shape[0]}, expected {self.embedding_size}")

        return ReferenceProfile(
            id=source_id,
            display_name=display_name_from_source(source_id, self.separator),
            descriptor=descriptor
        )
