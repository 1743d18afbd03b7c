import xml.etree.ElementTree as ET
from datetime import datetime
import numpy as np
from numpy.polynomial import Polynomial
from scipy.constants import c
from scipy.optimize import minimize_scalar

from pyifg import coordinates
from pyifg.errors import ConfigurationError, GeometryError

MAX_ITERATIONS = 30
TIME_TOLERANCE = 1e-11  # seconds
POSITION_TOLERANCE = 1e-6  # meters
ADJACENT_BEFORE = 3
ADJACENT_AFTER = 4


class Orbit:
    """
    Satellite trajectory from discrete state vectors.

    Positions are interpolated with a polynomial fitted over a local window of at most eight state vectors
    around the point of interest, which keeps long orbit arcs stable.
    """

    def __init__(self, times, positions, degree: int = 3, reference_time: datetime = None):
        times = np.asarray(times, dtype=float).ravel()
        positions = np.asarray(positions, dtype=float).reshape(-1, 3)

        if len(times) < 2:
            raise GeometryError(f"At least 2 orbit state vectors are required, got {len(times)}.")
        if len(times) != len(positions):
            raise GeometryError("Number of orbit times and positions differ.")
        if not 1 <= degree <= 5:
            raise ConfigurationError(f"Orbit interpolation degree must be within 1..5, got {degree}.")

        order = np.argsort(times)
        times = times[order]
        if np.any(np.diff(times) <= 0):
            raise GeometryError("Orbit state vector times must be distinct.")

        self.reference_time = reference_time
        self.times = times  # Time differences from reference time in seconds
        self.positions = positions[order]  # Shape: (n, 3)
        self.degree = degree
        self._polynomial_cache = {}  # (first, last) window index -> per axis polynomials

    def __len__(self):
        return len(self.times)

    def seconds_from_reference_time(self, time: datetime) -> float:
        return (time - self.reference_time).total_seconds()

    def window_around_index(self, index: int):
        """First and last (inclusive) state vector index of the local window anchored at `index`."""
        count = len(self.times)
        if index < ADJACENT_BEFORE:
            return 0, min(ADJACENT_BEFORE + ADJACENT_AFTER, count - 1)
        elif index > count - 5:
            return max(count - 8, 0), count - 1
        else:
            return index - ADJACENT_BEFORE, index + ADJACENT_AFTER

    def nearest_index(self, target) -> int:
        distances = np.linalg.norm(self.positions - np.asarray(target, dtype=float), axis=1)
        return int(np.argmin(distances))

    def adjacent_indices(self, target):
        return self.window_around_index(self.nearest_index(target))

    def adjacent(self, target):
        """Orbit made of the 7-8 state vectors closest to the geocentric target."""
        first, last = self.adjacent_indices(target)
        return Orbit(self.times[first:last + 1], self.positions[first:last + 1], self.degree, self.reference_time)

    def _polynomials(self, first: int, last: int):
        polynomials = self._polynomial_cache.get((first, last))
        if polynomials is None:
            times = self.times[first:last + 1]
            degree = min(self.degree, len(times) - 1)
            polynomials = tuple(Polynomial.fit(times, self.positions[first:last + 1, axis], degree)
                                for axis in range(3))
            self._polynomial_cache[(first, last)] = polynomials
        return polynomials

    def _polynomials_for_time(self, time: float):
        index = int(np.argmin(np.abs(self.times - time)))
        return self._polynomials(*self.window_around_index(index))

    def _polynomials_for_target(self, target):
        return self._polynomials(*self.adjacent_indices(target))

    @staticmethod
    def _evaluate(polynomials, time: float, derivative: int = 0) -> np.ndarray:
        if derivative == 0:
            return np.array([p(time) for p in polynomials])
        return np.array([p.deriv(derivative)(time) for p in polynomials])

    def interpolate_position(self, time: float) -> np.ndarray:
        return self._evaluate(self._polynomials_for_time(time), time)

    def interpolate_velocity(self, time: float) -> np.ndarray:
        return self._evaluate(self._polynomials_for_time(time), time, 1)

    def interpolate_acceleration(self, time: float) -> np.ndarray:
        return self._evaluate(self._polynomials_for_time(time), time, 2)

    def azimuth_time_from_geocentric(self, target) -> float:
        """
        Finds the time of closest approach of the orbit to a geocentric target by minimizing the squared
        distance over the time span of the state vectors nearest the target.

        Args:
            target: Target coordinate [x, y, z] in meters.

        Returns:
            float: Azimuth time in seconds from the orbit reference time.
        """
        target = np.asarray(target, dtype=float)
        first, last = self.adjacent_indices(target)
        polynomials = self._polynomials(first, last)
        # optimize the offset from the window centre
        centre = 0.5 * (self.times[first] + self.times[last])
        half_span = 0.5 * (self.times[last] - self.times[first])

        def objective(offset):
            return np.sum((self._evaluate(polynomials, centre + offset) - target) ** 2)

        result = minimize_scalar(
            objective,
            bounds=(-half_span, half_span),
            method='bounded',
            options={'xatol': TIME_TOLERANCE}
        )

        if not result.success:
            raise GeometryError(f"Time of closest approach not found for target {target.tolist()}: {result.message}")
        return centre + result.x

    def xyz_to_times(self, target):
        """Returns (azimuth time, one-way range time) of a geocentric target."""
        target = np.asarray(target, dtype=float)
        azimuth_time = self.azimuth_time_from_geocentric(target)
        polynomials = self._polynomials_for_target(target)
        distance = np.linalg.norm(target - self._evaluate(polynomials, azimuth_time))
        return azimuth_time, distance / c

    def initial_ground_guess(self, azimuth_time: float, range_time: float, height: float = 0.0,
                             look_direction: str = 'right') -> np.ndarray:
        satpos = self.interpolate_position(azimuth_time)
        satvel = self.interpolate_velocity(azimuth_time)
        up = satpos / np.linalg.norm(satpos)
        along = satvel / np.linalg.norm(satvel)
        side = np.cross(along, up)
        if look_direction == 'left':
            side = -side

        altitude = np.linalg.norm(satpos) - (coordinates.WGS84_A + height)
        slant_range = range_time * c
        ground_range = np.sqrt(max(slant_range ** 2 - altitude ** 2, 0.0))
        return satpos - up * altitude + side * ground_range

    def geocentric_from_times(self, azimuth_time: float, range_time: float, height: float = 0.0,
                              initial=None, look_direction: str = 'right') -> np.ndarray:
        """
        Geolocates an image point given by its azimuth time and one-way range time on the ellipsoid
        raised by `height`. Solves range sphere, zero-Doppler plane and ellipsoid with Newton iterations.
        """
        polynomials = self._polynomials_for_time(azimuth_time)
        satpos = self._evaluate(polynomials, azimuth_time)
        satvel = self._evaluate(polynomials, azimuth_time, 1)
        slant_range = range_time * c

        if initial is None:
            position = self.initial_ground_guess(azimuth_time, range_time, height, look_direction)
        else:
            position = np.array(initial, dtype=float)

        for _ in range(MAX_ITERATIONS):
            delta = position - satpos
            residual = np.array([
                np.dot(satvel, delta),
                np.dot(delta, delta) - slant_range ** 2,
                coordinates.ellipsoid_residual(position, height),
            ])
            jacobian = np.vstack([satvel, 2.0 * delta, coordinates.ellipsoid_normal(position, height)])
            try:
                step = np.linalg.solve(jacobian, -residual)
            except np.linalg.LinAlgError as e:
                raise GeometryError(f"Degenerate geometry at azimuth time {azimuth_time}.") from e
            position = position + step
            if np.linalg.norm(step) < POSITION_TOLERANCE:
                return position

        raise GeometryError(f"Geolocation did not converge at azimuth time {azimuth_time}, range time {range_time}.")

    def toXml(self, root: ET.Element):
        root.attrib["Degree"] = str(self.degree)
        if self.reference_time is not None:
            ref_time_elem = ET.SubElement(root, "ReferenceTime")
            ref_time_elem.text = self.reference_time.isoformat()

        for ix in range(len(self.times)):
            position = self.positions[ix]
            vec_elem = ET.SubElement(root, "Vector")
            vec_elem.attrib["SecondsFromReference"] = repr(float(self.times[ix]))
            pos_elem = ET.SubElement(vec_elem, "Position")
            x_elem = ET.SubElement(pos_elem, "X")
            x_elem.text = repr(float(position[0]))
            y_elem = ET.SubElement(pos_elem, "Y")
            y_elem.text = repr(float(position[1]))
            z_elem = ET.SubElement(pos_elem, "Z")
            z_elem.text = repr(float(position[2]))


def fromStateVectors(state_vectors, degree: int = 3, reference_time: datetime = None) -> Orbit:
    """Builds an orbit from (time, x, y, z) tuples."""
    data = np.asarray(state_vectors, dtype=float)
    if data.ndim != 2 or data.shape[1] != 4:
        raise GeometryError("Orbit state vectors must be (time, x, y, z) tuples.")
    return Orbit(data[:, 0], data[:, 1:], degree, reference_time)


def fromXml(root: ET.Element, degree: int = None) -> Orbit:
    reference_time = None
    ref_time_elem = root.find("ReferenceTime")
    if ref_time_elem is not None and ref_time_elem.text:
        reference_time = datetime.fromisoformat(ref_time_elem.text)

    if degree is None:
        degree = int(root.attrib.get("Degree", 3))

    t = []
    p = []
    for vector_elem in root.findall("Vector"):
        t.append(float(vector_elem.attrib["SecondsFromReference"]))
        pos_elem = vector_elem.find("Position")
        p.append([float(pos_elem.find("X").text), float(pos_elem.find("Y").text), float(pos_elem.find("Z").text)])

    return Orbit(np.array(t), np.array(p), degree, reference_time)
