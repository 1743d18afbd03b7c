import xml.etree.ElementTree as ET
import numpy as np
from scipy.constants import c

from pyifg import coordinates
from pyifg.errors import ConfigurationError


class Burst:
    """
    One TOPSAR burst of a sub-swath. A burst owns the lines `line_range[0]..line_range[1]` of the
    sub-swath image exclusively.
    """

    def __init__(self, index: int, first_line_time: float, last_line_time: float, line_range, pixel_range,
                 range_time_to_first_pixel: float, range_time_to_last_pixel: float,
                 azimuth_time_interval: float, column_spacing: float):
        self.index = index
        self.first_line_time = first_line_time  # Seconds from the orbit reference time
        self.last_line_time = last_line_time
        self.line_range = tuple(line_range)
        self.pixel_range = tuple(pixel_range)
        self.range_time_to_first_pixel = range_time_to_first_pixel  # One-way
        self.range_time_to_last_pixel = range_time_to_last_pixel
        self.azimuth_time_interval = azimuth_time_interval
        self.column_spacing = column_spacing  # One-way range time per pixel

    @property
    def min_line(self) -> int:
        return self.line_range[0]

    @property
    def max_line(self) -> int:
        return self.line_range[1]

    def line_to_azimuth_time(self, line):
        return self.first_line_time + (line - self.min_line) * self.azimuth_time_interval

    def pixel_to_range_time(self, pixel):
        return self.range_time_to_first_pixel + pixel * self.column_spacing

    def contains_line(self, line: int) -> bool:
        return self.min_line <= line <= self.max_line

    def corner_times(self):
        """(azimuth time, range time) of the four burst corners."""
        return [(self.first_line_time, self.range_time_to_first_pixel),
                (self.first_line_time, self.range_time_to_last_pixel),
                (self.last_line_time, self.range_time_to_first_pixel),
                (self.last_line_time, self.range_time_to_last_pixel)]

    def approx_scene_centre(self, orbit, height: float = 0.0, look_direction: str = 'right') -> np.ndarray:
        """
        Geocentric position of the burst centre on the ellipsoid: the four burst corners are geolocated,
        their latitudes and longitudes averaged and converted back at zero height.
        """
        lats = []
        lons = []
        for azimuth_time, range_time in self.corner_times():
            xyz = orbit.geocentric_from_times(azimuth_time, range_time, height, look_direction=look_direction)
            lat, lon, _ = coordinates.geocentric_to_geodetic(*xyz)
            lats.append(lat)
            lons.append(lon)

        return np.array(coordinates.geodetic_to_geocentric(np.mean(lats), np.mean(lons), 0.0))


class SubSwath:
    """Burst timing of one TOPSAR sub-swath."""

    def __init__(self):
        self.name = None
        self.lines_per_burst = None
        self.samples_per_burst = None
        self.burst_first_line_time = []
        self.burst_last_line_time = []
        self.range_time_to_first_pixel = None  # One-way
        self.range_time_to_last_pixel = None
        self.azimuth_time_interval = None
        self.range_spacing = None  # Slant range pixel spacing in meters

    @property
    def number_of_bursts(self) -> int:
        return len(self.burst_first_line_time)

    @property
    def column_spacing(self) -> float:
        return self.range_spacing / c

    def burst(self, index: int) -> Burst:
        if not 0 <= index < self.number_of_bursts:
            raise IndexError(f"Burst index {index} out of range for sub-swath {self.name}")
        min_line = index * self.lines_per_burst
        return Burst(index,
                     self.burst_first_line_time[index],
                     self.burst_last_line_time[index],
                     (min_line, min_line + self.lines_per_burst - 1),
                     (0, self.samples_per_burst - 1),
                     self.range_time_to_first_pixel,
                     self.range_time_to_last_pixel,
                     self.azimuth_time_interval,
                     self.column_spacing)

    def bursts(self):
        return [self.burst(b) for b in range(self.number_of_bursts)]

    def toXml(self, root: ET.Element):
        root.attrib["Name"] = self.name
        ET.SubElement(root, "LinesPerBurst").text = str(self.lines_per_burst)
        ET.SubElement(root, "SamplesPerBurst").text = str(self.samples_per_burst)
        ET.SubElement(root, "RangeTimeToFirstPixel").text = repr(self.range_time_to_first_pixel)
        ET.SubElement(root, "RangeTimeToLastPixel").text = repr(self.range_time_to_last_pixel)
        ET.SubElement(root, "AzimuthTimeInterval").text = repr(self.azimuth_time_interval)
        ET.SubElement(root, "RangeSpacing").text = repr(self.range_spacing)
        bursts_elem = ET.SubElement(root, "Bursts")
        for first, last in zip(self.burst_first_line_time, self.burst_last_line_time):
            burst_elem = ET.SubElement(bursts_elem, "Burst")
            burst_elem.attrib["FirstLineTime"] = repr(float(first))
            burst_elem.attrib["LastLineTime"] = repr(float(last))


def createSubSwath(name: str, lines_per_burst: int, samples_per_burst: int, burst_first_line_times,
                   azimuth_time_interval: float, range_time_to_first_pixel: float, range_spacing: float) -> SubSwath:
    """Sub-swath with contiguous bursts; the last line time of each burst follows from the line interval."""
    if lines_per_burst <= 0 or samples_per_burst <= 0:
        raise ConfigurationError("Bursts need a positive number of lines and samples.")

    swath = SubSwath()
    swath.name = name
    swath.lines_per_burst = lines_per_burst
    swath.samples_per_burst = samples_per_burst
    swath.azimuth_time_interval = azimuth_time_interval
    swath.range_time_to_first_pixel = range_time_to_first_pixel
    swath.range_spacing = range_spacing
    swath.range_time_to_last_pixel = range_time_to_first_pixel + (samples_per_burst - 1) * range_spacing / c
    swath.burst_first_line_time = [float(t) for t in burst_first_line_times]
    swath.burst_last_line_time = [t + (lines_per_burst - 1) * azimuth_time_interval
                                  for t in swath.burst_first_line_time]
    return swath


def fromXml(root: ET.Element) -> SubSwath:
    swath = SubSwath()
    swath.name = root.attrib.get("Name", "")
    swath.lines_per_burst = int(root.find("LinesPerBurst").text)
    swath.samples_per_burst = int(root.find("SamplesPerBurst").text)
    swath.range_time_to_first_pixel = float(root.find("RangeTimeToFirstPixel").text)
    swath.range_time_to_last_pixel = float(root.find("RangeTimeToLastPixel").text)
    swath.azimuth_time_interval = float(root.find("AzimuthTimeInterval").text)
    swath.range_spacing = float(root.find("RangeSpacing").text)
    for burst_elem in root.findall("Bursts/Burst"):
        swath.burst_first_line_time.append(float(burst_elem.attrib["FirstLineTime"]))
        swath.burst_last_line_time.append(float(burst_elem.attrib["LastLineTime"]))
    return swath
