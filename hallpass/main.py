"""
Main Application Module

Ties the profile store, detection loop and pass sessions together behind a
command line interface: run a single pass request, run the interactive home
screen, or manage enrolled profiles.
"""

import argparse
import asyncio
import logging
import sys
import time
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from .camera import CameraSource, open_video_source
from .config import DEFAULT_CONFIG_PATH, load_config, setup_logging
from .detection import DetectionLoop
from .errors import HallPassError, NoIdentitiesEnrolledError, ResourceError
from .extractor import FaceDescriptorExtractor
from .notifier import create_notifier
from .overlay import PreviewWindow
from .profiles import ProfileDirectory, ProfileStore, display_name_from_source, source_name_for
from .session import PassSession, Session, format_pass_time

logger = logging.getLogger(__name__)


class HallPassApp:
    """Hall pass kiosk application."""

    def __init__(self, config: Dict[str, Any], camera_id: Optional[int] = None,
                 video_path: Optional[str] = None, preview: bool = True):
        """
        Initialize the hall pass application.

        Args:
            config: Configuration dictionary
            camera_id: Camera device ID (overrides config)
            video_path: Video file to use instead of a camera
            preview: Whether to show the camera preview window
        """
        self.config = config
        self.camera_id = camera_id
        self.video_path = video_path
        self.preview = preview
        self.passes: List[str] = list(config.get('passes', []))
        self.countdown_seconds = config.get('enrollment', {}).get('countdown_seconds', 3)

        self.extractor = FaceDescriptorExtractor(config)
        self.directory = ProfileDirectory(config)
        self.store = ProfileStore(self.directory, self.extractor, config)
        self.notifier = create_notifier(config)

        logger.info("Hall pass application initialized")

    def _open_video_source(self) -> CameraSource:
        return open_video_source(self.config, video_path=self.video_path, camera_id=self.camera_id)

    def resolve_pass(self, pass_type: str) -> str:
        """Match a pass name case-insensitively against the configured passes."""
        for known in self.passes:
            if known.lower() == pass_type.strip().lower():
                return known
        raise ValueError(f"Unknown pass type '{pass_type}', choose from: {', '.join(self.passes)}")

    async def load_profiles(self) -> None:
        await self.store.reload()
        if self.store.degraded:
            for error in self.store.load_errors:
                logger.warning(f"Profile not loaded: {error}")

    async def run_pass(self, pass_type: str) -> Session:
        """
        Run one pass request session.

        Args:
            pass_type: Requested pass

        Returns:
            The completed session record
        """
        pass_type = self.resolve_pass(pass_type)
        session = PassSession(
            pass_type,
            self.store,
            DetectionLoop(self.extractor, self.config),
            self._open_video_source,
            self.notifier,
            self.config
        )

        window = PreviewWindow(pass_type=pass_type, on_quit=session.abandon) if self.preview else None
        try:
            result = await session.run(window)
        finally:
            if window is not None:
                window.close()

        if result.granted:
            print(f"Pass Granted! {result.granted_identity.display_name} -> {pass_type} "
                  f"at {format_pass_time(result.granted_at)} ({result.confidence_text}%)")
        else:
            print(f"No pass granted for {pass_type}")
        return result

    def capture_photo(self) -> np.ndarray:
        """Capture one frame from the camera after a countdown."""
        with CameraSource(self.camera_id if self.camera_id is not None
                          else self.config.get('video', {}).get('camera_id', 0), self.config) as camera:
            for remaining in range(self.countdown_seconds, 0, -1):
                print(f"{remaining}...")
                time.sleep(1.0)
            frame = camera.read()

        if frame is None:
            raise ResourceError("Failed to capture frame")
        return frame

    async def enroll(self, display_name: str, image_path: Optional[str] = None) -> str:
        """
        Enroll a person from an image file or a fresh camera capture.

        Args:
            display_name: Person name, e.g. "Jane Doe"
            image_path: Optional image file; the camera is used when omitted

        Returns:
            Source identifier of the new profile
        """
        if image_path:
            image = cv2.imread(image_path)
            if image is None:
                raise HallPassError(f"Could not read image {image_path}")
        else:
            image = await asyncio.get_running_loop().run_in_executor(None, self.capture_photo)

        faces = await self.extractor.detect(image)
        if len(faces) != 1:
            raise HallPassError(f"Expected exactly one face in the enrollment photo, found {len(faces)}")

        source_id = self.directory.save_image(image, display_name)
        await self.load_profiles()
        print(f"Successfully enrolled {display_name_from_source(source_id)}")
        return source_id

    def list_profiles(self) -> List[str]:
        try:
            source_ids = self.directory.list_enrollable_images()
        except HallPassError as e:
            logger.error(f"Cannot list profiles: {e}")
            return []

        print(f"Enrolled people ({len(source_ids)}):")
        for source_id in source_ids:
            print(f"  {display_name_from_source(source_id)} ({source_id})")
        return source_ids

    def delete_profile(self, display_name: str) -> bool:
        source_id = source_name_for(display_name, self.directory.separator)
        deleted = self.directory.delete(source_id)
        if not deleted:
            print(f"No profile found for {display_name}")
        return deleted

    async def run_interactive(self) -> None:
        """Home screen loop: pick a pass, run the session, come back."""
        await self.load_profiles()

        while True:
            print("\n=== Hall Pass ===")
            for index, pass_type in enumerate(self.passes, start=1):
                print(f"  {index} - {pass_type}")
            print("  a - Add student")
            print("  l - List students")
            print("  q - Quit")
            if self.store.is_empty:
                print("No students registered. Please add students.")

            cmd = input("> ").strip().lower()
            try:
                if cmd == 'q':
                    break
                elif cmd == 'a':
                    name = input("Enter student name: ").strip()
                    if name:
                        await self.enroll(name)
                elif cmd == 'l':
                    self.list_profiles()
                elif cmd.isdigit() and 1 <= int(cmd) <= len(self.passes):
                    await self.run_pass(self.passes[int(cmd) - 1])
                    await self.load_profiles()
                elif cmd:
                    print(f"Unknown command: {cmd}")
            except NoIdentitiesEnrolledError:
                print("No students registered. Please add students first.")
            except (HallPassError, ValueError) as e:
                print(f"Error: {e}")

    async def run(self, args: argparse.Namespace) -> int:
        if args.list:
            self.list_profiles()
            return 0
        if args.delete:
            return 0 if self.delete_profile(args.delete) else 1
        if args.enroll:
            await self.enroll(args.enroll, args.image)
            return 0
        if args.interactive:
            await self.run_interactive()
            return 0
        if args.pass_type:
            await self.load_profiles()
            await self.run_pass(args.pass_type)
            return 0

        logger.error("Nothing to do: choose --pass, --interactive, --enroll, --list or --delete")
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Hall Pass Face Recognition')
    parser.add_argument('--config', '-c', default=DEFAULT_CONFIG_PATH,
                        help='Configuration file path')
    parser.add_argument('--camera', type=int, default=None,
                        help='Camera device ID')
    parser.add_argument('--video', '-v', type=str,
                        help='Video file path (instead of camera)')
    parser.add_argument('--pass', '-p', dest='pass_type',
                        help='Run a single pass request of this type')
    parser.add_argument('--interactive', '-i', action='store_true',
                        help='Run the interactive home screen')
    parser.add_argument('--enroll', metavar='NAME',
                        help='Enroll a student under this name')
    parser.add_argument('--image', metavar='PATH',
                        help='Enrollment photo (camera capture when omitted)')
    parser.add_argument('--list', action='store_true',
                        help='List enrolled students')
    parser.add_argument('--delete', metavar='NAME',
                        help='Delete an enrolled student')
    parser.add_argument('--no-preview', action='store_true',
                        help='Do not open the camera preview window')

    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config)

    try:
        app = HallPassApp(config, camera_id=args.camera, video_path=args.video,
                          preview=not args.no_preview)
        return asyncio.run(app.run(args))
    except NoIdentitiesEnrolledError:
        logger.error("No students registered. Please add students first.")
        return 2
    except (HallPassError, ValueError) as e:
        logger.error(f"Application error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == '__main__':
    sys.exit(main())
