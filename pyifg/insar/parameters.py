import xml.etree.ElementTree as ET

from pyifg.errors import ConfigurationError

# (xml element name, attribute name, type, default)
OPTIONS = (
    ("cohWinAz", "coh_win_az", int, 10),
    ("cohWinRg", "coh_win_rg", int, 10),
    ("subtractFlatEarthPhase", "subtract_flat_earth_phase", bool, True),
    ("srpPolynomialDegree", "srp_polynomial_degree", int, 5),
    ("srpNumberPoints", "srp_number_points", int, 501),
    ("orbitDegree", "orbit_degree", int, 3),
    ("includeCoherence", "include_coherence", bool, True),
    ("squarePixel", "square_pixel", bool, False),
    ("outputFlatEarthPhase", "output_flat_earth_phase", bool, False),
    ("createVirtualBands", "create_virtual_bands", bool, True),
)


class InterferogramParameters:
    def __init__(self):
        for _, attribute, _, default in OPTIONS:
            setattr(self, attribute, default)

    def validate(self):
        if self.coh_win_az < 1 or self.coh_win_rg < 1:
            raise ConfigurationError(f"Coherence window must be positive, got {self.coh_win_az} x {self.coh_win_rg}")
        if not 1 <= self.srp_polynomial_degree <= 8:
            raise ConfigurationError(f"srpPolynomialDegree must be within 1..8, got {self.srp_polynomial_degree}")
        if self.srp_number_points < 1:
            raise ConfigurationError(f"srpNumberPoints must be positive, got {self.srp_number_points}")
        if not 1 <= self.orbit_degree <= 5:
            raise ConfigurationError(f"orbitDegree must be within 1..5, got {self.orbit_degree}")

    def toXml(self, root: ET.Element):
        params_elem = ET.SubElement(root, "InterferogramParameters")
        for element, attribute, kind, _ in OPTIONS:
            value = getattr(self, attribute)
            ET.SubElement(params_elem, element).text = str(value).lower() if kind is bool else str(value)


class CoherenceParameters(InterferogramParameters):
    """Parameters of the coherence-only operator; the flat earth phase is kept unless asked for."""

    def __init__(self):
        super().__init__()
        self.subtract_flat_earth_phase = False


def _parse(text: str, kind):
    if kind is bool:
        if text.strip().lower() not in ('true', 'false'):
            raise ConfigurationError(f"Expected true or false, got {text}")
        return text.strip().lower() == 'true'
    try:
        return kind(text)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value {text}") from e


def fromXml(root: ET.Element, parameters_class=InterferogramParameters) -> InterferogramParameters:
    params = parameters_class()
    params_elem = root if root.tag == "InterferogramParameters" else root.find("InterferogramParameters")
    if params_elem is None:
        return params

    for element, attribute, kind, _ in OPTIONS:
        elem = params_elem.find(element)
        if elem is not None and elem.text:
            setattr(params, attribute, _parse(elem.text, kind))
    return params


def fromArgs(args, parameters_class=InterferogramParameters) -> InterferogramParameters:
    """Parameters from an argparse namespace; attributes missing or None keep their defaults."""
    params = parameters_class()
    for _, attribute, _, _ in OPTIONS:
        value = getattr(args, attribute, None)
        if value is not None:
            setattr(params, attribute, value)
    return params
