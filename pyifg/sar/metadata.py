import xml.etree.ElementTree as ET
import datetime
from scipy.constants import c

from pyifg.sar import orbit, burst

DATE_TAG_FORMAT = '%d%b%Y'


class MetaData:
    """
    Metadata of one acquisition of a co-registered stack.

    Azimuth times are seconds from the orbit reference time, range times are one-way.
    """

    def __init__(self):
        self.orbit = None
        self.acquisition_date = None
        self.absolute_orbit = None
        self.product_name = None
        self.sensor = None
        self.polarisations = []
        self.wavelength = None
        self.number_rows = None
        self.number_columns = None
        self.range_time_to_first_pixel = None
        self.column_spacing = None  # Fast time in seconds (one-way)
        self.first_azimuth_time = None
        self.row_spacing = None  # Slow time in seconds
        self.range_spacing = None  # Meters
        self.azimuth_spacing = None  # Meters
        self.incidence_angle = None  # Degrees at mid swath
        self.srgr_flag = False
        self.avg_scene_height = 0.0
        self.look_direction = 'right'
        self.subswaths = []

    @property
    def date_tag(self) -> str:
        return self.acquisition_date.strftime(DATE_TAG_FORMAT)

    @property
    def last_azimuth_time(self) -> float:
        return self.line_to_azimuth_time(self.number_rows - 1)

    @property
    def scene_centre_azimuth_time(self) -> float:
        return 0.5 * (self.first_azimuth_time + self.last_azimuth_time)

    @property
    def is_topsar(self) -> bool:
        return len(self.subswaths) > 0

    def pixel_to_range_time(self, pixel):
        return self.range_time_to_first_pixel + pixel * self.column_spacing

    def range_time_to_pixel(self, range_time):
        return (range_time - self.range_time_to_first_pixel) / self.column_spacing

    def line_to_azimuth_time(self, line):
        return self.first_azimuth_time + line * self.row_spacing

    def azimuth_time_to_line(self, azimuth_time):
        return (azimuth_time - self.first_azimuth_time) / self.row_spacing

    def pixel_from_geocentric(self, geocentric):
        """Image coordinates [x, y] of a geocentric point."""
        az_time, rg_time = self.orbit.xyz_to_times(geocentric)
        return [self.range_time_to_pixel(rg_time), self.azimuth_time_to_line(az_time)]

    def geocentric_from_pixel(self, line, pixel, initial=None):
        return self.orbit.geocentric_from_times(self.line_to_azimuth_time(line), self.pixel_to_range_time(pixel),
                                                self.avg_scene_height, initial, self.look_direction)

    def toXml(self, root: ET.Element):
        meta_elem = ET.SubElement(root, "MetaData")

        if self.acquisition_date is not None:
            ET.SubElement(meta_elem, "AcquisitionDate").text = self.acquisition_date.isoformat()
        if self.absolute_orbit is not None:
            ET.SubElement(meta_elem, "AbsoluteOrbit").text = str(self.absolute_orbit)
        if self.product_name is not None:
            ET.SubElement(meta_elem, "ProductName").text = self.product_name
        if self.sensor is not None:
            ET.SubElement(meta_elem, "SensorName").text = self.sensor
        for polarisation in self.polarisations:
            ET.SubElement(meta_elem, "Polarisation").text = polarisation
        if self.wavelength is not None:
            ET.SubElement(meta_elem, "Wavelength").text = repr(self.wavelength)
        if self.number_rows is not None:
            ET.SubElement(meta_elem, "NumberOfRows").text = str(self.number_rows)
        if self.number_columns is not None:
            ET.SubElement(meta_elem, "NumberOfSamples").text = str(self.number_columns)
        if self.range_time_to_first_pixel is not None:
            ET.SubElement(meta_elem, "OneWayTimeToFirstRangePixel").text = repr(self.range_time_to_first_pixel)
        if self.column_spacing is not None:
            ET.SubElement(meta_elem, "SlcImageColumnSpacing").text = repr(self.column_spacing)
        if self.first_azimuth_time is not None:
            ET.SubElement(meta_elem, "TimeOfFirstAzimuthLine").text = repr(self.first_azimuth_time)
        if self.row_spacing is not None:
            ET.SubElement(meta_elem, "SlcImageRowSpacing").text = repr(self.row_spacing)
        if self.range_spacing is not None:
            ET.SubElement(meta_elem, "RangeSpacing").text = repr(self.range_spacing)
        if self.azimuth_spacing is not None:
            ET.SubElement(meta_elem, "AzimuthSpacing").text = repr(self.azimuth_spacing)
        if self.incidence_angle is not None:
            ET.SubElement(meta_elem, "IncidenceAngle").text = repr(self.incidence_angle)
        ET.SubElement(meta_elem, "SrgrFlag").text = str(self.srgr_flag).lower()
        ET.SubElement(meta_elem, "AverageSceneHeight").text = repr(self.avg_scene_height)
        ET.SubElement(meta_elem, "LookDirection").text = self.look_direction

        if self.orbit is not None:
            orbit_elem = ET.SubElement(meta_elem, "Orbit")
            self.orbit.toXml(orbit_elem)

        for swath in self.subswaths:
            swath_elem = ET.SubElement(meta_elem, "SubSwath")
            swath.toXml(swath_elem)


def createMetaData(acquisition_date: datetime.date, absolute_orbit: int, wavelength: float, state_vectors,
                   number_rows: int, number_columns: int, first_azimuth_time: float, row_spacing: float,
                   range_time_to_first_pixel: float, range_spacing: float, orbit_degree: int = 3,
                   reference_time: datetime.datetime = None) -> MetaData:
    """Metadata from the scalar fields of an acquisition and its (time, x, y, z) state vectors."""
    meta = MetaData()
    meta.acquisition_date = acquisition_date
    meta.absolute_orbit = absolute_orbit
    meta.wavelength = wavelength
    meta.orbit = orbit.fromStateVectors(state_vectors, orbit_degree, reference_time)
    meta.number_rows = number_rows
    meta.number_columns = number_columns
    meta.first_azimuth_time = first_azimuth_time
    meta.row_spacing = row_spacing
    meta.range_time_to_first_pixel = range_time_to_first_pixel
    meta.range_spacing = range_spacing
    meta.column_spacing = range_spacing / c
    return meta


def _text(root: ET.Element, tag: str):
    elem = root.find(tag)
    if elem is not None and elem.text:
        return elem.text
    return None


def fromXml(root: ET.Element, orbit_degree: int = None) -> MetaData:
    metadata = MetaData()

    acquisition_date = _text(root, "AcquisitionDate")
    if acquisition_date is not None:
        metadata.acquisition_date = datetime.date.fromisoformat(acquisition_date)

    absolute_orbit = _text(root, "AbsoluteOrbit")
    if absolute_orbit is not None:
        metadata.absolute_orbit = int(absolute_orbit)

    metadata.product_name = _text(root, "ProductName")
    metadata.sensor = _text(root, "SensorName")
    metadata.polarisations = [elem.text for elem in root.findall("Polarisation") if elem.text]

    for tag, attribute, cast in (("Wavelength", "wavelength", float),
                                 ("NumberOfRows", "number_rows", int),
                                 ("NumberOfSamples", "number_columns", int),
                                 ("OneWayTimeToFirstRangePixel", "range_time_to_first_pixel", float),
                                 ("SlcImageColumnSpacing", "column_spacing", float),
                                 ("TimeOfFirstAzimuthLine", "first_azimuth_time", float),
                                 ("SlcImageRowSpacing", "row_spacing", float),
                                 ("RangeSpacing", "range_spacing", float),
                                 ("AzimuthSpacing", "azimuth_spacing", float),
                                 ("IncidenceAngle", "incidence_angle", float),
                                 ("AverageSceneHeight", "avg_scene_height", float)):
        value = _text(root, tag)
        if value is not None:
            setattr(metadata, attribute, cast(value))

    srgr_flag = _text(root, "SrgrFlag")
    if srgr_flag is not None:
        metadata.srgr_flag = srgr_flag.lower() == 'true'

    look_direction = _text(root, "LookDirection")
    if look_direction is not None:
        metadata.look_direction = look_direction.lower()

    orbit_elem = root.find("Orbit")
    if orbit_elem is not None:
        metadata.orbit = orbit.fromXml(orbit_elem, orbit_degree)

    metadata.subswaths = [burst.fromXml(swath_elem) for swath_elem in root.findall("SubSwath")]

    return metadata
