import logging
from types import MappingProxyType

from pyifg.errors import ConfigurationError, GeometryError
from pyifg.sar import orbit, product as sarproduct
from pyifg.sar.product import UNIT_REAL, UNIT_IMAGINARY, UNIT_COHERENCE, UNIT_PHASE, UNIT_INTENSITY

logger = logging.getLogger(__name__)

MASTER_TAG = 'mst'
SLAVE_TAG = 'slv'
PRODUCT_TAG = 'ifg'


class Acquisition:
    """
    Complex image of one acquisition in a stack, given by its real and imaginary band.
    The key combines absolute orbit, sub-swath and polarisation.
    """

    def __init__(self, key: str, date: str, polarisation: str, subswath: str, metadata, orbit, real_band,
                 imag_band):
        self.key = key
        self.date = date
        self.polarisation = polarisation
        self.subswath = subswath
        self.metadata = metadata
        self.orbit = orbit
        self.real_band = real_band
        self.imag_band = imag_band

    @property
    def name(self) -> str:
        return f'{self.key}_{self.date}'

    @property
    def wavelength(self) -> float:
        return self.metadata.wavelength

    @property
    def no_data_value(self):
        return self.real_band.no_data_value


class AcquisitionPair:
    def __init__(self, master: Acquisition, slave: Acquisition):
        self.master = master
        self.slave = slave
        self.name = f'{master.key}_{slave.key}'
        self.bands = {}  # Unit -> target band name

    @property
    def tag(self) -> str:
        """Band name suffix `[_SUBSWATH][_POL]_mdate_sdate`."""
        return (subswath_tag(self.master.subswath) + polarisation_tag(self.master.polarisation) +
                f'_{self.master.date}_{self.slave.date}')

    def add_band(self, unit: str, name: str):
        self.bands[unit] = name

    def band(self, unit: str):
        return self.bands.get(unit)


def subswath_tag(subswath: str) -> str:
    return f'_{subswath.upper()}' if subswath else ''


def polarisation_tag(polarisation: str) -> str:
    return f'_{polarisation.upper()}' if polarisation else ''


def _acquisition_orbit(metadata, orbit_degree: int = None):
    if metadata.orbit is None or orbit_degree is None:
        return metadata.orbit
    return orbit.Orbit(metadata.orbit.times, metadata.orbit.positions, orbit_degree, metadata.orbit.reference_time)


def acquisitions_from_product(source_product, tag: str, metadata, subswaths, polarisations,
                              orbit_degree: int = None) -> dict:
    """
    Finds the complex bands of the acquisition described by `metadata` in `source_product`.

    A band belongs to the acquisition if its name contains the tag (`mst` or `slv`), the acquisition
    date and, where given, the sub-swath and polarisation markers. The band unit decides between
    real and imaginary part.

    :return: Acquisitions by key `absolute orbit[_SUBSWATH][_POL]`
    """
    date = metadata.date_tag
    acquisition_orbit = _acquisition_orbit(metadata, orbit_degree)
    result = {}

    for swath in subswaths:
        swath_marker = subswath_tag(swath)
        for polarisation in polarisations:
            pol_marker = polarisation_tag(polarisation)
            key = f'{metadata.absolute_orbit}{swath_marker}{pol_marker}'

            real_band = None
            imag_band = None
            for band_name in source_product.band_names():
                if tag not in band_name or date not in band_name:
                    continue
                if swath_marker and swath_marker not in band_name:
                    continue
                if pol_marker and pol_marker not in band_name:
                    continue
                band = source_product.get_band(band_name)
                if band.unit == UNIT_REAL:
                    real_band = band
                elif band.unit == UNIT_IMAGINARY:
                    imag_band = band

            if real_band is None and imag_band is None:
                continue
            if real_band is None or imag_band is None:
                part = 'real' if real_band is None else 'imaginary'
                raise ConfigurationError(f"Acquisition {key} ({tag} {date}) has no {part} band")

            result[key] = Acquisition(key, date, polarisation.upper() if polarisation else None, swath, metadata,
                                      acquisition_orbit, real_band, imag_band)

    return result


class AcquisitionStack:
    """Master and slave acquisitions of a co-registered stack and the pairs formed from them."""

    def __init__(self, masters: dict, slaves: dict, pairs):
        self.masters = MappingProxyType(dict(masters))
        self.slaves = MappingProxyType(dict(slaves))
        self.pairs = tuple(pairs)

    def pair(self, name: str) -> AcquisitionPair:
        for pair in self.pairs:
            if pair.name == name:
                return pair
        return None

    def check_orbits(self):
        for acq in list(self.masters.values()) + list(self.slaves.values()):
            if acq.orbit is None:
                raise GeometryError(f"Acquisition {acq.name} has no orbit state vectors")

    def allocate_target_bands(self, target_product, parameters):
        """Adds the output bands of every pair to `target_product` and registers them per slave."""
        for pair in self.pairs:
            tag = pair.tag
            target_band_names = []

            i_band = target_product.add_band(f'i_{PRODUCT_TAG}{tag}', UNIT_REAL)
            pair.add_band(UNIT_REAL, i_band.name)
            target_band_names.append(i_band.name)

            q_band = target_product.add_band(f'q_{PRODUCT_TAG}{tag}', UNIT_IMAGINARY)
            pair.add_band(UNIT_IMAGINARY, q_band.name)
            target_band_names.append(q_band.name)

            if parameters.create_virtual_bands:
                target_product.add_virtual_band(f'Intensity_{PRODUCT_TAG}{tag}', UNIT_INTENSITY,
                                                sarproduct.VIRTUAL_INTENSITY, i_band, q_band)
                phase_band = target_product.add_virtual_band(f'Phase_{PRODUCT_TAG}{tag}', UNIT_PHASE,
                                                             sarproduct.VIRTUAL_PHASE, i_band, q_band)
                target_band_names.append(phase_band.name)

            if parameters.include_coherence:
                coherence_band = target_product.add_band(f'coh{tag}', UNIT_COHERENCE,
                                                         no_data_value=pair.master.no_data_value)
                pair.add_band(UNIT_COHERENCE, coherence_band.name)
                target_band_names.append(coherence_band.name)

            if parameters.subtract_flat_earth_phase and parameters.output_flat_earth_phase:
                fep_band = target_product.add_band(f'fep{tag}', UNIT_PHASE)
                pair.add_band(UNIT_PHASE, fep_band.name)
                target_band_names.append(fep_band.name)

            target_product.save_slave_band_names(slave_product_name(pair.slave), target_band_names)
            logger.debug(f"Allocated bands {target_band_names} for pair {pair.name}")


def slave_product_name(acquisition: Acquisition) -> str:
    if acquisition.metadata.product_name:
        return acquisition.metadata.product_name
    return f'{acquisition.metadata.sensor or "SLC"}_{acquisition.date}'


def subswath_names(metadata):
    names = [swath.name for swath in metadata.subswaths]
    return names if names else ['']


def product_polarisations(source_product):
    """Polarisations of the stack; a single empty entry if the bands carry no polarisation marker."""
    polarisations = list(source_product.metadata.polarisations)
    return polarisations if polarisations else ['']


def fromProduct(source_product, parameters) -> AcquisitionStack:
    master_meta = source_product.metadata
    if master_meta is None:
        raise ConfigurationError(f"Product {source_product.name} has no master metadata")
    if not source_product.slave_metadata:
        raise ConfigurationError(f"Product {source_product.name} has no slave acquisitions")

    subswaths = subswath_names(master_meta)
    polarisations = product_polarisations(source_product)

    masters = acquisitions_from_product(source_product, MASTER_TAG, master_meta, subswaths, polarisations,
                                        parameters.orbit_degree)
    slaves = {}
    for slave_meta in source_product.slave_metadata:
        slaves.update(acquisitions_from_product(source_product, SLAVE_TAG, slave_meta, subswaths, polarisations,
                                                parameters.orbit_degree))

    if not masters:
        raise ConfigurationError(f"No master bands found in product {source_product.name}")
    if not slaves:
        raise ConfigurationError(f"No slave bands found in product {source_product.name}")

    pairs = []
    for master in masters.values():
        for slave in slaves.values():
            if master.subswath != slave.subswath:
                continue
            if master.polarisation is None or master.polarisation == slave.polarisation:
                pairs.append(AcquisitionPair(master, slave))

    if not pairs:
        raise ConfigurationError("No master and slave acquisitions with compatible polarisations")

    logger.info(f"Found {len(masters)} master and {len(slaves)} slave acquisitions, {len(pairs)} pairs")
    return AcquisitionStack(masters, slaves, pairs)
