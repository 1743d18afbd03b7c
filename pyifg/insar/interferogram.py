import logging
import threading
from functools import partial
from multiprocessing.pool import ThreadPool
import numpy as np
from rasterio.windows import Window

from pyifg import tools
from pyifg.errors import ProcessingError
from pyifg.insar import acquisition, coherence, flat_earth, segmentation
from pyifg.insar.parameters import InterferogramParameters
from pyifg.sar.product import Product, UNIT_REAL, UNIT_IMAGINARY, UNIT_COHERENCE, UNIT_PHASE

logger = logging.getLogger(__name__)

PRODUCT_SUFFIX = '_Ifg'
DEFAULT_TILE_SIZE = 512


class InterferogramOp:
    """
    Interferograms of every master/slave pair of a co-registered stack.

    For each pair the slave is corrected by the flat earth phase, multiplied with the conjugate of the
    master and the coherence is estimated on a sliding window. TOPSAR stacks are processed burst by burst
    with one flat earth polynomial per burst.
    """

    product_suffix = PRODUCT_SUFFIX

    def __init__(self, source_product: Product, parameters: InterferogramParameters = None):
        self.source_product = source_product
        self.parameters = parameters if parameters is not None else InterferogramParameters()
        self.width = source_product.width
        self.height = source_product.height
        self.coh_win_az = self.parameters.coh_win_az
        self.coh_win_rg = self.parameters.coh_win_rg
        self.stack = None
        self.target_product = None
        self.segmentations = {}  # sub-swath name -> segmentation strategy
        self.is_topsar = False
        self.burst_scene_centres = {}  # (sub-swath index, burst index) -> geocentric position
        self.cache = flat_earth.FlatEarthCache()

    @property
    def master_metadata(self):
        return self.source_product.metadata

    def initialize(self) -> Product:
        """Checks the configuration, pairs the acquisitions and allocates the target product."""
        self.parameters.validate()

        if self.parameters.square_pixel:
            meta = self.master_metadata
            self.coh_win_az, self.coh_win_rg = coherence.square_pixel_window(
                self.parameters.coh_win_rg, meta.range_spacing, meta.azimuth_spacing, meta.srgr_flag,
                meta.incidence_angle)
            logger.info(f"Square pixel coherence window {self.coh_win_az} x {self.coh_win_rg}")

        self.stack = acquisition.fromProduct(self.source_product, self.parameters)
        self.is_topsar = self.master_metadata.is_topsar
        self.segmentations = segmentation.fromMetaData(self.master_metadata, self.width, self.height)

        if self.parameters.subtract_flat_earth_phase:
            self.stack.check_orbits()
            if self.is_topsar:
                self._burst_scene_centres()

        self.target_product = self.create_target_product()
        return self.target_product

    def _burst_scene_centres(self):
        meta = self.master_metadata
        for s, swath in enumerate(meta.subswaths):
            for burst in swath.bursts():
                self.burst_scene_centres[(s, burst.index)] = burst.approx_scene_centre(
                    meta.orbit, meta.avg_scene_height, meta.look_direction)

    def create_target_product(self) -> Product:
        target = Product(self.source_product.name + self.product_suffix, self.width, self.height)
        target.metadata = self.source_product.metadata
        target.slave_metadata = list(self.source_product.slave_metadata)
        target.bistatic = self.source_product.bistatic

        self.allocate_target_bands(target)

        for band_name in self.source_product.band_names():
            if band_name.startswith('elevation'):
                band = self.source_product.get_band(band_name)
                target.add_band(band.name, band.unit, band.data, band.no_data_value)
        return target

    def allocate_target_bands(self, target: Product):
        self.stack.allocate_target_bands(target, self.parameters)

    def _estimate(self, pair, segment: segmentation.Segment) -> flat_earth.FlatEarthPolynomial:
        if segment.is_burst:
            return flat_earth.estimate_burst_flat_earth_polynomial(
                pair.master, pair.slave, segment.subswath_index, segment.burst_index,
                self.burst_scene_centres[(segment.subswath_index, segment.burst_index)],
                self.parameters.srp_polynomial_degree, self.parameters.srp_number_points)
        return flat_earth.estimate_flat_earth_polynomial(
            pair.master, pair.slave, self.width, self.height, self.parameters.srp_polynomial_degree,
            self.parameters.srp_number_points, self.source_product.bistatic)

    def flat_earth_polynomial(self, pair, segment: segmentation.Segment) -> flat_earth.FlatEarthPolynomial:
        if segment.is_burst:
            key = flat_earth.burst_key(pair, segment.subswath_index, segment.burst_index)
        else:
            key = flat_earth.scene_key(pair)
        return self.cache.get(key, partial(self._estimate, pair, segment))

    def estimate_flat_earth(self):
        """Estimates the flat earth polynomial of every pair, or of every burst in its sub-swath, once."""
        if not self.parameters.subtract_flat_earth_phase:
            return

        for pair in self.stack.pairs:
            strategy = self.segmentation_for(pair)
            if self.is_topsar:
                for burst in strategy.subswath.bursts():
                    segment = segmentation.Segment(None, burst.line_range, burst.pixel_range, strategy.subswath_index,
                                                   burst.index)
                    self.flat_earth_polynomial(pair, segment)
            else:
                self.flat_earth_polynomial(pair, strategy.segments(None)[0])
        logger.info(f"Flat earth polynomials ready for {len(self.stack.pairs)} pairs")

    def segmentation_for(self, pair):
        """Segmentation of the sub-swath the pair's master lies in."""
        return self.segmentations[pair.master.subswath]

    @staticmethod
    def read_complex(acq, window: Window):
        real = acq.real_band.read(window)
        imag = acq.imag_band.read(window)
        return real, real + 1j * imag.astype(np.float64)

    def no_data_mask(self, pair, master_real: np.ndarray, slave_real: np.ndarray):
        no_data_value = pair.master.no_data_value
        if no_data_value is None:
            return None
        return (master_real == no_data_value) | (slave_real == no_data_value)

    def compute_pair(self, pair, segment: segmentation.Segment):
        """
        Output samples of one pair for one segment.

        :return: List of (band name, values) on `segment.window`
        """
        window = segment.window
        master_real, master = self.read_complex(pair.master, window)
        slave_real, slave = self.read_complex(pair.slave, window)

        phase = None
        reference = None
        if self.parameters.subtract_flat_earth_phase:
            phase = self.flat_earth_polynomial(pair, segment).evaluate_window(window)
            reference = np.exp(1j * phase)
            slave = slave * reference  # the reference phase advances the slave, no conjugate

        interferogram = master * np.conj(slave)

        results = [(pair.band(UNIT_REAL), interferogram.real), (pair.band(UNIT_IMAGINARY), interferogram.imag)]

        if self.parameters.include_coherence:
            cpl_coherence = self.window_coherence(pair, segment)
            if reference is not None:
                cpl_coherence = cpl_coherence * np.conj(reference)
            results.append((pair.band(UNIT_COHERENCE), np.abs(cpl_coherence)))

        if phase is not None and pair.band(UNIT_PHASE) is not None:
            results.append((pair.band(UNIT_PHASE), phase))

        mask = self.no_data_mask(pair, master_real, slave_real)
        if mask is not None and mask.any():
            no_data_value = pair.master.no_data_value
            results = [(name, np.where(mask, no_data_value, values)) for name, values in results]

        return results

    def window_coherence(self, pair, segment: segmentation.Segment) -> np.ndarray:
        extended = coherence.extended_window(segment.window, self.coh_win_az, self.coh_win_rg)
        _, master = self.read_complex(pair.master, extended)
        _, slave = self.read_complex(pair.slave, extended)
        line_range = segment.line_range if segment.is_burst else None
        return coherence.complex_coherence(master, slave, self.coh_win_az, self.coh_win_rg, line_range,
                                           int(extended.row_off))

    def compute_tile(self, window: Window):
        """
        Computes all output bands on `window`. Nothing is written unless every segment and pair succeeded.
        """
        try:
            buffers = []
            for pair in self.stack.pairs:
                for segment in self.segmentation_for(pair).segments(window):
                    for name, values in self.compute_pair(pair, segment):
                        buffers.append((name, segment.window, values))
        except ProcessingError:
            raise
        except Exception as e:
            raise ProcessingError(f"Computing tile {window} failed: {e}") from e

        for name, segment_window, values in buffers:
            self.target_product.get_band(name).write(segment_window, values.astype(np.float32))
        logger.debug(f"Computed tile {window}")

    def tiles(self, tile_size: int = DEFAULT_TILE_SIZE):
        for y in range(0, self.height, tile_size):
            for x in range(0, self.width, tile_size):
                yield Window(x, y, min(tile_size, self.width - x), min(tile_size, self.height - y))

    def _compute_tile_task(self, window: Window, cancel_event: threading.Event):
        if cancel_event is not None and cancel_event.is_set():
            return False
        self.compute_tile(window)
        return True

    def compute(self, tile_size: int = DEFAULT_TILE_SIZE, processes: int = None,
                cancel_event: threading.Event = None, output=tools.output_none) -> bool:
        """
        Computes the whole target product with a pool of threads.

        Args:
            tile_size (int): Edge length of the square tiles in pixels.
            processes (int): Number of worker threads, all cores if None.
            cancel_event (threading.Event): When set, tiles not started yet are skipped.
            output: Progress callback called as output(name, current, total).

        Returns:
            bool: False if the computation was cancelled.
        """
        if self.target_product is None:
            self.initialize()
        self.estimate_flat_earth()

        windows = list(self.tiles(tile_size))
        logger.info(f"Computing {len(windows)} tiles of {self.target_product.name}")

        completed = 0
        with ThreadPool(processes) as pool:
            task = partial(self._compute_tile_task, cancel_event=cancel_event)
            for count, done in enumerate(pool.imap_unordered(task, windows), 1):
                if done:
                    completed += 1
                output(self.target_product.name, count, len(windows))

        if completed < len(windows):
            logger.warning(f"Cancelled after {completed} of {len(windows)} tiles")
            return False

        logger.info(f"Finished {self.target_product.name}")
        return True


def createInterferogram(source_product: Product, parameters: InterferogramParameters = None,
                        tile_size: int = DEFAULT_TILE_SIZE, processes: int = None, output=tools.output_none) -> Product:
    op = InterferogramOp(source_product, parameters)
    op.initialize()
    op.compute(tile_size, processes, output=output)
    return op.target_product
