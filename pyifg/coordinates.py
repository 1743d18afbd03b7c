from functools import lru_cache
from pyproj import Transformer
import numpy as np

# WGS84 ellipsoid
WGS84_A = 6378137.0
WGS84_B = 6356752.314245179

GEODETIC_CRS = "EPSG:4326"
GEOCENTRIC_CRS = "EPSG:4978"


@lru_cache(maxsize=None)
def _transformer(source: str, target: str) -> Transformer:
    return Transformer.from_crs(source, target, always_xy=True)


def geodetic_to_geocentric(lat, lon, height=0):
    """
    WGS84 latitude, longitude (degrees) and ellipsoidal height (meters) to geocentric x, y, z in meters.
    Accepts scalars or arrays.
    """
    return _transformer(GEODETIC_CRS, GEOCENTRIC_CRS).transform(lon, lat, height)


def geocentric_to_geodetic(x, y, z):
    """
    Convert geocentric coordinates (ECEF) to geodetic coordinates.

    Returns:
        tuple: (lat, lon, height) with angles in degrees and the height in meters.
    """
    lon, lat, height = _transformer(GEOCENTRIC_CRS, GEODETIC_CRS).transform(x, y, z)
    return lat, lon, height


def ellipsoid_normal(position, height=0.0):
    # Gradient of (x^2 + y^2) / (a + h)^2 + z^2 / (b + h)^2
    a = WGS84_A + height
    b = WGS84_B + height
    return np.array([2.0 * position[0] / (a * a), 2.0 * position[1] / (a * a), 2.0 * position[2] / (b * b)])


def ellipsoid_residual(position, height=0.0):
    a = WGS84_A + height
    b = WGS84_B + height
    return (position[0] ** 2 + position[1] ** 2) / (a * a) + position[2] ** 2 / (b * b) - 1.0
