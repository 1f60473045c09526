"""
9:16 input preparation.

Providers crop non-portrait inputs unpredictably, which tends to cut the pet
out of frame. We letterbox the upload onto a 9:16 canvas (contain, never
crop), re-host it, and hand that URL to the provider instead.
"""

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ..errors import StorageError
from .storage import BlobStorage, prepared_image_key

logger = logging.getLogger(__name__)

# 9:16 canvas per provider resolution
CANVAS_SIZES = {
    "480p": (480, 854),
    "720p": (720, 1280),
    "1080p": (1080, 1920),
}


def fit_to_portrait(image_bytes: bytes, resolution: str = "480p") -> bytes:
    """
    Resize an image to fit inside a 9:16 canvas, centred, padding the rest
    with black. Returns JPEG bytes.
    """
    width, height = CANVAS_SIZES.get(resolution.lower(), CANVAS_SIZES["480p"])

    img = Image.open(BytesIO(image_bytes))
    img = img.convert("RGB")

    scale = min(width / img.width, height / img.height)
    new_size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
    resized = img.resize(new_size, Image.Resampling.LANCZOS)

    canvas = Image.new("RGB", (width, height), (0, 0, 0))
    canvas.paste(resized, ((width - new_size[0]) // 2, (height - new_size[1]) // 2))

    output = BytesIO()
    canvas.save(output, format="JPEG", quality=90)
    logger.info(f"Prepared image {img.width}x{img.height} -> {width}x{height} (9:16)")
    return output.getvalue()


class ImagePreparer:
    def __init__(self, storage: Optional[BlobStorage], resolution: str = "480p"):
        self.storage = storage
        self.resolution = resolution

    def prepare(self, image_url: str, user_id: str, job_id: str) -> str:
        """
        Return the URL the provider should animate. Falls back to the
        original upload when anything in the preparation step fails.
        """
        if self.storage is None:
            return image_url
        try:
            data, _ = self.storage.download(image_url)
            prepared = fit_to_portrait(data, self.resolution)
            return self.storage.upload_bytes(prepared_image_key(user_id, job_id), prepared, "image/jpeg")
        except (StorageError, UnidentifiedImageError, OSError) as e:
            logger.warning(f"[{job_id}] Image preparation failed, using original upload: {e}")
            return image_url
