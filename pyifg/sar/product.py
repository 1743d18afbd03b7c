import xml.etree.ElementTree as ET
from xml.dom import minidom
import pathlib
import logging
import numpy as np
from rasterio.windows import Window

from pyifg.sar import banddata, metadata

logger = logging.getLogger(__name__)

UNIT_REAL = 'real'
UNIT_IMAGINARY = 'imaginary'
UNIT_INTENSITY = 'intensity'
UNIT_PHASE = 'phase'
UNIT_COHERENCE = 'coherence'

VIRTUAL_INTENSITY = 'intensity'
VIRTUAL_PHASE = 'phase'


class Band:
    def __init__(self, name: str, unit: str, data: banddata.IBandData, no_data_value: float = None):
        self.name = name
        self.unit = unit
        self.data = data
        self.no_data_value = no_data_value

    @property
    def is_virtual(self) -> bool:
        return False

    def read(self, window: Window = None, boundless: bool = True) -> np.ndarray:
        return self.data.read(window, boundless)

    def write(self, window: Window, values: np.ndarray):
        self.data.write(window, values)


class VirtualBand(Band):
    """Intensity or phase computed on read from a pair of real and imaginary bands."""

    def __init__(self, name: str, unit: str, expression: str, real_band: Band, imag_band: Band,
                 no_data_value: float = None):
        super().__init__(name, unit, None, no_data_value)
        self.expression = expression
        self.real_band = real_band
        self.imag_band = imag_band

    @property
    def is_virtual(self) -> bool:
        return True

    def read(self, window: Window = None, boundless: bool = True) -> np.ndarray:
        i = self.real_band.read(window, boundless)
        q = self.imag_band.read(window, boundless)
        if self.expression == VIRTUAL_INTENSITY:
            values = i * i + q * q
        else:
            values = np.arctan2(q, i)
        if self.no_data_value is not None:
            values = np.where(i == self.real_band.no_data_value, self.no_data_value, values)
        return values.astype(np.float32)

    def write(self, window: Window, values: np.ndarray):
        raise TypeError(f"Virtual band {self.name} is read only")


class Product:
    """
    Raster product of equally sized float bands.

    `metadata` describes the master acquisition, `slave_metadata` the co-registered slaves in stack order.
    """

    def __init__(self, name: str, width: int, height: int):
        self.name = name
        self.width = width
        self.height = height
        self.metadata = None
        self.slave_metadata = []
        self.bistatic = False
        self.bands = {}
        self.slave_band_names = {}

    def band_names(self):
        return list(self.bands.keys())

    def get_band(self, name: str) -> Band:
        return self.bands.get(name)

    def add_band(self, name: str, unit: str, data: banddata.IBandData = None, no_data_value: float = None) -> Band:
        """Adds a band; without `data` the band is held in memory and zero initialised."""
        if name in self.bands:
            raise ValueError(f"Band {name} already exists in product {self.name}")
        if data is None:
            data = banddata.createMemoryBandData(self.width, self.height)
        band = Band(name, unit, data, no_data_value)
        self.bands[name] = band
        return band

    def add_virtual_band(self, name: str, unit: str, expression: str, real_band: Band, imag_band: Band,
                         no_data_value: float = None) -> VirtualBand:
        if name in self.bands:
            raise ValueError(f"Band {name} already exists in product {self.name}")
        band = VirtualBand(name, unit, expression, real_band, imag_band, no_data_value)
        self.bands[name] = band
        return band

    def save_slave_band_names(self, slave_name: str, names):
        """Registers the output bands that belong to the slave acquisition `slave_name`."""
        self.slave_band_names.setdefault(slave_name, [])
        for name in names:
            if name not in self.slave_band_names[slave_name]:
                self.slave_band_names[slave_name].append(name)

    def save(self, directory: str, overwrite: bool = False) -> pathlib.Path:
        """
        Saves every band as a single band float32 GeoTIFF next to an xml description.

        :param directory: Target directory, created if missing
        :param overwrite: Replace existing files
        :return: Path of the xml file
        """
        directory = pathlib.Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        xml_filename = directory / f'{self.name}.pyifg.xml'
        if xml_filename.exists() and not overwrite:
            raise FileExistsError(f"{xml_filename} exists")

        root = ET.Element("PyIfg")
        product_elem = ET.SubElement(root, "Product")
        product_elem.attrib["Name"] = self.name
        ET.SubElement(product_elem, "Width").text = str(self.width)
        ET.SubElement(product_elem, "Height").text = str(self.height)
        ET.SubElement(product_elem, "Bistatic").text = str(self.bistatic).lower()

        if self.metadata is not None:
            self.metadata.toXml(product_elem)
        slaves_elem = ET.SubElement(product_elem, "Slaves")
        for slave_meta in self.slave_metadata:
            slave_meta.toXml(slaves_elem)

        bands_elem = ET.SubElement(product_elem, "Bands")
        for band in self.bands.values():
            band_elem = ET.SubElement(bands_elem, "Band")
            band_elem.attrib["Name"] = band.name
            band_elem.attrib["Unit"] = band.unit
            if band.no_data_value is not None:
                band_elem.attrib["NoDataValue"] = repr(float(band.no_data_value))
            if band.is_virtual:
                band_elem.attrib["Expression"] = band.expression
                band_elem.attrib["RealBand"] = band.real_band.name
                band_elem.attrib["ImagBand"] = band.imag_band.name
                continue

            tiff_fn = directory / f'{self.name}_{band.name}.tiff'
            if overwrite or not tiff_fn.exists():
                band.data.saveFloatTiff(tiff_fn, band.read(), band.no_data_value)
            band.data.toXml(band_elem, tiff_fn.relative_to(directory))

        registry_elem = ET.SubElement(product_elem, "SlaveBandNames")
        for slave_name, names in self.slave_band_names.items():
            slave_elem = ET.SubElement(registry_elem, "Slave")
            slave_elem.attrib["Name"] = slave_name
            for name in names:
                ET.SubElement(slave_elem, "BandName").text = name

        xml_str = ET.tostring(root, encoding="utf-8")
        pretty_xml = minidom.parseString(xml_str).toprettyxml(indent="  ")
        with open(xml_filename, "w", encoding="utf-8") as f:
            f.write(pretty_xml)

        logger.info(f"Saved product {self.name} with {len(self.bands)} bands to {xml_filename}")
        return xml_filename


def fromXml(xml_path: str, orbit_degree: int = None) -> Product:
    root = ET.parse(xml_path).getroot()
    product_elem = root.find("Product")
    if product_elem is None:
        raise ValueError(f"{xml_path} is not a pyifg product")

    product = Product(product_elem.attrib["Name"],
                      int(product_elem.find("Width").text),
                      int(product_elem.find("Height").text))
    bistatic_elem = product_elem.find("Bistatic")
    product.bistatic = bistatic_elem is not None and bistatic_elem.text.lower() == 'true'

    meta_elem = product_elem.find("MetaData")
    if meta_elem is not None:
        product.metadata = metadata.fromXml(meta_elem, orbit_degree)
    product.slave_metadata = [metadata.fromXml(elem, orbit_degree) for elem in product_elem.findall("Slaves/MetaData")]

    virtual_elems = []
    for band_elem in product_elem.findall("Bands/Band"):
        no_data_value = band_elem.attrib.get("NoDataValue")
        if no_data_value is not None:
            no_data_value = float(no_data_value)
        if "Expression" in band_elem.attrib:
            virtual_elems.append((band_elem, no_data_value))
            continue
        product.add_band(band_elem.attrib["Name"], band_elem.attrib["Unit"],
                         banddata.fromXml(band_elem, xml_path), no_data_value)

    for band_elem, no_data_value in virtual_elems:
        product.add_virtual_band(band_elem.attrib["Name"], band_elem.attrib["Unit"], band_elem.attrib["Expression"],
                                 product.get_band(band_elem.attrib["RealBand"]),
                                 product.get_band(band_elem.attrib["ImagBand"]), no_data_value)

    for slave_elem in product_elem.findall("SlaveBandNames/Slave"):
        product.save_slave_band_names(slave_elem.attrib["Name"], [elem.text for elem in slave_elem.findall("BandName")])

    return product
