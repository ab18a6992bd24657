import logging
import os
from datetime import datetime
from typing import Optional, Tuple

from PIL import Image

logger = logging.getLogger(__name__)


class ScreenCapture:
    """Captures the screen for the screenshot action."""

    def __init__(self, save_dir: Optional[str] = None):
        self.save_dir = save_dir
        self.last_capture: Optional[Image.Image] = None
        if save_dir:
            os.makedirs(save_dir, exist_ok=True)

    def capture(self, region: Optional[Tuple[int, int, int, int]] = None) -> Image.Image:
        import mss

        with mss.mss() as sct:
            if region:
                x, y, w, h = region
                monitor = {'left': x, 'top': y, 'width': w, 'height': h}
            else:
                monitor = sct.monitors[0]
            sct_img = sct.grab(monitor)
            image = Image.frombytes('RGB', sct_img.size, sct_img.rgb)

        self.last_capture = image
        if self.save_dir:
            path = os.path.join(self.save_dir, f"screen_{datetime.now():%Y%m%d_%H%M%S_%f}.png")
            image.save(path)
            logger.debug("Saved screenshot to %s", path)
        return image

    def __call__(self) -> Image.Image:
        return self.capture()
