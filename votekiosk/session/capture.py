from __future__ import annotations

from typing import Optional, Tuple, Union

import cv2
import numpy as np

from votekiosk.session.events import WEBCAM_UNAVAILABLE_WARNING
from votekiosk.utils.log import get_logger

logger = get_logger(__name__)

FRAME_READ_WARNING = "Camera frame unavailable. Retrying..."


class WebcamCapture:
    """Thin cv2.VideoCapture wrapper; failures come back as warnings, never raise.

    Example:
        >>> with WebcamCapture(0) as cam:
        ...     ok, frame, warning = cam.read()
    """

    def __init__(self, source: Union[int, str] = 0, width: Optional[int] = None, height: Optional[int] = None):
        self.source = source
        self.width = width
        self.height = height
        self._cap: Optional[cv2.VideoCapture] = None
        self.warning: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def open(self) -> bool:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            self.warning = WEBCAM_UNAVAILABLE_WARNING
            logger.warning(f"无法打开摄像头: {self.source}")
            return False
        if self.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.width))
        if self.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.height))
        self._cap = cap
        self.warning = None
        logger.info(
            f"摄像头已打开: {self.source} "
            f"({int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))}x{int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))})"
        )
        return True

    def read(self) -> Tuple[bool, Optional[np.ndarray], Optional[str]]:
        """Return (frame_available, frame, warning)."""
        if not self.is_open:
            return False, None, self.warning or WEBCAM_UNAVAILABLE_WARNING
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return False, None, FRAME_READ_WARNING
        return True, frame, None

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __enter__(self) -> "WebcamCapture":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
