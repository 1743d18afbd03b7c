import logging
import numpy as np

from pyifg.insar import acquisition
from pyifg.insar.interferogram import InterferogramOp
from pyifg.insar.parameters import CoherenceParameters
from pyifg.sar.product import UNIT_COHERENCE, UNIT_PHASE

logger = logging.getLogger(__name__)

COHERENCE_TAG = 'coh'


class CoherenceOp(InterferogramOp):
    """Coherence magnitude, and its phase after flat earth removal, without the interferogram bands."""

    product_suffix = '_Coh'

    def __init__(self, source_product, parameters: CoherenceParameters = None):
        super().__init__(source_product, parameters if parameters is not None else CoherenceParameters())

    def allocate_target_bands(self, target):
        for pair in self.stack.pairs:
            names = []
            coherence_band = target.add_band(f'{COHERENCE_TAG}{pair.tag}', UNIT_COHERENCE,
                                             no_data_value=pair.master.no_data_value)
            pair.add_band(UNIT_COHERENCE, coherence_band.name)
            names.append(coherence_band.name)

            if self.parameters.subtract_flat_earth_phase:
                phase_band = target.add_band(f'Phase_{COHERENCE_TAG}{pair.tag}', UNIT_PHASE,
                                             no_data_value=pair.master.no_data_value)
                pair.add_band(UNIT_PHASE, phase_band.name)
                names.append(phase_band.name)

            target.save_slave_band_names(acquisition.slave_product_name(pair.slave), names)
            logger.debug(f"Allocated bands {names} for pair {pair.name}")

    def compute_pair(self, pair, segment):
        window = segment.window
        master_real = pair.master.real_band.read(window)
        slave_real = pair.slave.real_band.read(window)

        cpl_coherence = self.window_coherence(pair, segment)
        results = []
        if self.parameters.subtract_flat_earth_phase:
            phase = self.flat_earth_polynomial(pair, segment).evaluate_window(window)
            cpl_coherence = cpl_coherence * np.conj(np.exp(1j * phase))
            results.append((pair.band(UNIT_PHASE), np.angle(cpl_coherence)))
        results.insert(0, (pair.band(UNIT_COHERENCE), np.abs(cpl_coherence)))

        mask = self.no_data_mask(pair, master_real, slave_real)
        if mask is not None and mask.any():
            results = [(name, np.where(mask, pair.master.no_data_value, values)) for name, values in results]
        return results
