import logging
import threading
import numpy as np
import scipy.linalg
from scipy.constants import c
from sklearn.preprocessing import PolynomialFeatures

from pyifg.errors import NumericError

logger = logging.getLogger(__name__)


def number_of_coefficients(degree: int) -> int:
    return (degree + 1) * (degree + 2) // 2


def degree_from_coefficients(count: int) -> int:
    """Inverse of number_of_coefficients; raises NumericError if `count` is not a triangular number."""
    degree = int(round(0.5 * (-3 + np.sqrt(1 + 8 * count))))
    if number_of_coefficients(degree) != count:
        raise NumericError(f"{count} coefficients do not form a complete 2D polynomial")
    return degree


def normalize(value, min_value: float, max_value: float):
    """Maps [min_value, max_value] onto [-2, 2]."""
    if max_value == min_value:
        return np.asarray(value, dtype=float) - min_value
    return (np.asarray(value, dtype=float) - 0.5 * (min_value + max_value)) / (0.25 * (max_value - min_value))


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def distribute_points(number_of_points: int, min_line: int, max_line: int, min_pixel: int, max_pixel: int):
    """
    Spreads points evenly over the window [min_line, max_line] x [min_pixel, max_pixel] (inclusive).
    The points are laid out row by row with a constant step in pixel direction.

    :return: Integer array of shape (number_of_points, 2) with (line, pixel) per point
    """
    lines = max_line - min_line + 1
    pixels = max_pixel - min_pixel + 1
    result = np.zeros((number_of_points, 2), dtype=int)
    if number_of_points == 1:
        result[0] = [_round_half_up(0.5 * (min_line + max_line)), _round_half_up(0.5 * (min_pixel + max_pixel))]
        return result

    win_p = np.sqrt(number_of_points / (lines / pixels))
    win_l = int(number_of_points / win_p)
    if win_l < 1:
        win_l = 1

    delta_line = (lines - 1) / (win_l - 1) if win_l > 1 else 0.0
    total_pixels = int(np.floor(pixels * win_l))
    delta_pixel = (total_pixels - 1) / (number_of_points - 1)

    pixel = -delta_pixel
    line = 0.0
    for i in range(number_of_points):
        pixel += delta_pixel
        while _round_half_up(pixel) >= pixels:
            pixel -= pixels
            line += delta_line
        result[i, 0] = min(_round_half_up(line + min_line), max_line)
        result[i, 1] = _round_half_up(pixel + min_pixel)

    return result


def exponents(degree: int) -> np.ndarray:
    """(line, pixel) exponent of each term: line^(j-k) * pixel^k for j = 0..degree, k = 0..j."""
    return PolynomialFeatures(degree).fit(np.zeros((1, 2))).powers_


def design_matrix(lines_norm, pixels_norm, degree: int) -> np.ndarray:
    positions = np.column_stack([np.ravel(lines_norm), np.ravel(pixels_norm)])
    return PolynomialFeatures(degree).fit_transform(positions)


def solve_normal_equations(a: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Least squares solution of A x = y via the normal equations (AtA) x = Aty."""
    if np.linalg.matrix_rank(a) < a.shape[1]:
        raise NumericError(f"Design matrix of shape {a.shape} is rank deficient")

    n = a.T @ a
    rhs = a.T @ y
    try:
        x = scipy.linalg.solve(n, rhs, assume_a='sym')
    except (np.linalg.LinAlgError, ValueError) as e:
        raise NumericError("Normal equations are singular") from e

    if not np.all(np.isfinite(x)):
        raise NumericError("Normal equations have no finite solution")
    return x


class FlatEarthPolynomial:
    """
    2D polynomial over normalised (line, pixel) coordinates approximating the reference phase of
    an ellipsoidal earth.
    """

    def __init__(self, coefficients, line_range, pixel_range):
        self.coefficients = np.asarray(coefficients, dtype=float)
        self.degree = degree_from_coefficients(len(self.coefficients))
        self.line_range = tuple(line_range)
        self.pixel_range = tuple(pixel_range)

    def evaluate(self, lines, pixels) -> np.ndarray:
        """
        Phase at the given image coordinates. `lines` and `pixels` broadcast against each other,
        e.g. a column of lines and a row of pixels give the phase grid of a tile.
        """
        line_norm = normalize(lines, *self.line_range)
        pixel_norm = normalize(pixels, *self.pixel_range)
        phase = np.zeros(np.broadcast(line_norm, pixel_norm).shape)
        for coefficient, (line_exp, pixel_exp) in zip(self.coefficients, exponents(self.degree)):
            phase = phase + coefficient * line_norm ** line_exp * pixel_norm ** pixel_exp
        return phase

    def evaluate_window(self, window) -> np.ndarray:
        lines = np.arange(window.row_off, window.row_off + window.height)[:, np.newaxis]
        pixels = np.arange(window.col_off, window.col_off + window.width)[np.newaxis, :]
        return self.evaluate(lines, pixels)


def fit_polynomial(lines, pixels, phases, degree: int, line_range, pixel_range) -> FlatEarthPolynomial:
    a = design_matrix(normalize(lines, *line_range), normalize(pixels, *pixel_range), degree)
    coefficients = solve_normal_equations(a, np.asarray(phases, dtype=float))
    return FlatEarthPolynomial(coefficients, line_range, pixel_range)


def _phase_factor(wavelength: float) -> float:
    return -4.0 * np.pi * c / wavelength


def estimate_flat_earth_polynomial(master, slave, width: int, height: int, degree: int, number_of_points: int,
                                   bistatic: bool = False) -> FlatEarthPolynomial:
    """
    Reference phase polynomial of a pair over the whole scene.

    Sample points are geolocated with the master orbit on the ellipsoid raised by the average scene height;
    the slave range time follows from the zero-Doppler position of the slave orbit.

    Args:
        master (Acquisition): Master acquisition.
        slave (Acquisition): Slave acquisition co-registered to the master.
        width (int): Scene width in pixels.
        height (int): Scene height in lines.
        degree (int): Polynomial degree.
        number_of_points (int): Number of sample points.
        bistatic (bool): Slave range time is the mean of master and slave range time.

    Returns:
        FlatEarthPolynomial: Polynomial over lines [0, height-1] and pixels [0, width-1].
    """
    master_meta = master.metadata
    line_range = (0, height - 1)
    pixel_range = (0, width - 1)
    positions = distribute_points(number_of_points, line_range[0], line_range[1], pixel_range[0], pixel_range[1])

    master_factor = _phase_factor(master.wavelength)
    slave_factor = _phase_factor(slave.wavelength)

    phases = np.zeros(number_of_points)
    for i, (line, pixel) in enumerate(positions):
        master_range_time = master_meta.pixel_to_range_time(pixel)
        master_azimuth_time = master_meta.line_to_azimuth_time(line)
        xyz = master.orbit.geocentric_from_times(master_azimuth_time, master_range_time,
                                                 master_meta.avg_scene_height,
                                                 look_direction=master_meta.look_direction)
        _, slave_range_time = slave.orbit.xyz_to_times(xyz)
        if bistatic:
            slave_range_time = 0.5 * (slave_range_time + master_range_time)
        phases[i] = master_factor * master_range_time - slave_factor * slave_range_time

    polynomial = fit_polynomial(positions[:, 0], positions[:, 1], phases, degree, line_range, pixel_range)
    logger.info(f"Estimated flat earth polynomial of degree {degree} for {master.key} and {slave.key}")
    return polynomial


def estimate_burst_flat_earth_polynomial(master, slave, subswath_index: int, burst_index: int, scene_centre,
                                         degree: int, number_of_points: int) -> FlatEarthPolynomial:
    """
    Reference phase polynomial of one TOPSAR burst. Both orbits are reduced to the state vectors closest
    to the burst centre `scene_centre` and sample points are geolocated at zero height.
    """
    swath = master.metadata.subswaths[subswath_index]
    burst = swath.burst(burst_index)
    master_orbit = master.orbit.adjacent(scene_centre)
    slave_orbit = slave.orbit.adjacent(scene_centre)

    positions = distribute_points(number_of_points, burst.line_range[0], burst.line_range[1],
                                  burst.pixel_range[0], burst.pixel_range[1])

    master_factor = _phase_factor(master.wavelength)
    slave_factor = _phase_factor(slave.wavelength)

    phases = np.zeros(number_of_points)
    for i, (line, pixel) in enumerate(positions):
        master_range_time = burst.pixel_to_range_time(pixel)
        master_azimuth_time = burst.line_to_azimuth_time(line)
        xyz = master_orbit.geocentric_from_times(master_azimuth_time, master_range_time, 0.0, initial=scene_centre,
                                                 look_direction=master.metadata.look_direction)
        _, slave_range_time = slave_orbit.xyz_to_times(xyz)
        phases[i] = master_factor * master_range_time - slave_factor * slave_range_time

    logger.debug(f"Burst {burst_index} of sub-swath {swath.name}: {number_of_points} sample points")
    return fit_polynomial(positions[:, 0], positions[:, 1], phases, degree, burst.line_range, burst.pixel_range)


class _CacheEntry:
    def __init__(self):
        self.lock = threading.Lock()
        self.done = False
        self.value = None
        self.error = None


class FlatEarthCache:
    """
    Flat earth polynomials by key. Each polynomial is estimated at most once, also when several
    threads ask for the same key at the same time. A failed estimate is kept and raised again.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries = {}

    def __contains__(self, key) -> bool:
        with self._lock:
            entry = self._entries.get(key)
        return entry is not None and entry.done and entry.error is None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key, factory) -> FlatEarthPolynomial:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _CacheEntry()
                self._entries[key] = entry

        with entry.lock:
            if not entry.done:
                try:
                    entry.value = factory()
                except Exception as e:
                    entry.error = e
                entry.done = True

        if entry.error is not None:
            raise entry.error
        return entry.value


def scene_key(pair) -> tuple:
    return (pair.name,)


def burst_key(pair, subswath_index: int, burst_index: int) -> tuple:
    return (pair.name, subswath_index, burst_index)
