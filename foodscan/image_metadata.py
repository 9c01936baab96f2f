"""
Image facts sent alongside an upload to the remote analysis service.

Only what could help a food-quality model is kept: pixel dimensions, the
decoded format, capture time, camera orientation and GPS position. Everything
is converted into JSON-serialisable primitives.
"""

from __future__ import annotations

import io
import logging
from fractions import Fraction
from typing import Any, Dict, Optional

from PIL import ExifTags, Image

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp")

ORIENTATION_TO_DEGREES = {1: 0, 3: 180, 6: 90, 8: 270}

GPS_IFD = 0x8825


def _to_float(value: Any) -> Optional[float]:
  """Convert an EXIF rational (Fraction, IFDRational or pair) to a float."""
  if isinstance(value, tuple) and len(value) == 2:
    numerator, denominator = value
    if not denominator:
      return None
    return float(numerator) / float(denominator)
  if isinstance(value, (int, float, Fraction)):
    return float(value)
  try:
    return float(value)
  except (TypeError, ValueError, ZeroDivisionError):
    return None


def _degrees(values: Any, reference: Any) -> Optional[float]:
  if not isinstance(values, tuple) or len(values) != 3:
    return None
  parts = [_to_float(part) for part in values]
  if any(part is None for part in parts):
    return None
  degrees, minutes, seconds = parts
  result = degrees + minutes / 60.0 + seconds / 3600.0
  return -result if reference in ("S", "s", "W", "w") else result


def _gps(exif: Image.Exif) -> Optional[Dict[str, float]]:
  gps_raw = exif.get_ifd(GPS_IFD)
  if not gps_raw:
    return None
  tags = {ExifTags.GPSTAGS.get(key, str(key)): value for key, value in gps_raw.items()}
  position = {
    "latitude": _degrees(tags.get("GPSLatitude"), tags.get("GPSLatitudeRef")),
    "longitude": _degrees(tags.get("GPSLongitude"), tags.get("GPSLongitudeRef")),
  }
  position = {key: value for key, value in position.items() if value is not None}
  return position or None


def extract_metadata(image_bytes: bytes, content_type: str) -> Dict[str, Any]:
  """
  Return a small description of an uploaded image.

  PDFs and undecodable files yield an empty mapping; metadata is an
  enrichment and never a reason to reject an upload.
  """
  if content_type not in IMAGE_CONTENT_TYPES:
    return {}

  try:
    return _describe(image_bytes)
  except Exception as exc:
    logger.debug("Failed to parse image metadata: %s", exc)
    return {}


def _describe(image_bytes: bytes) -> Dict[str, Any]:
  with Image.open(io.BytesIO(image_bytes)) as image:
    result: Dict[str, Any] = {
      "format": image.format,
      "width": image.width,
      "height": image.height,
    }
    exif = image.getexif()
    if not exif:
      return result

    named = {ExifTags.TAGS.get(tag_id, str(tag_id)): value for tag_id, value in exif.items()}
    position = _gps(exif)

  for key in ("Make", "Model"):
    if named.get(key):
      result[key.lower()] = str(named[key]).strip()

  orientation = named.get("Orientation")
  if isinstance(orientation, int):
    result["rotationDegrees"] = ORIENTATION_TO_DEGREES.get(orientation, 0)

  captured = named.get("DateTimeOriginal") or named.get("DateTime")
  if captured:
    result["capturedAt"] = str(captured)

  if position:
    result["gps"] = position

  return result


__all__ = ["extract_metadata"]
