import unittest
import threading
import numpy as np
from rasterio.windows import Window

from pyifg.errors import ConfigurationError, GeometryError, ProcessingError
from pyifg.insar import interferogram, segmentation, flat_earth
from pyifg.insar.parameters import InterferogramParameters
from pyifg.sar import burst
import synthetic

TAG = '_12Jan2020_24Jan2020'


def parameters(subtract_flat_earth_phase=False, win=3):
    params = InterferogramParameters()
    params.coh_win_az = win
    params.coh_win_rg = win
    params.subtract_flat_earth_phase = subtract_flat_earth_phase
    return params


def read(target, name):
    return target.get_band(name).read()


class InterferogramTest(unittest.TestCase):

    def test_identical_unit_images(self):
        image = synthetic.unit_image(8, 8)
        target = interferogram.createInterferogram(synthetic.create_stack(image, image), parameters(), tile_size=4)

        ifg = read(target, f'i_ifg{TAG}') + 1j * read(target, f'q_ifg{TAG}')
        np.testing.assert_allclose(np.ones((8, 8)), np.abs(ifg), atol=1e-6)
        np.testing.assert_allclose(np.zeros((8, 8)), np.angle(ifg), atol=1e-6)
        np.testing.assert_allclose(np.ones((8, 8)), read(target, f'coh{TAG}'), atol=1e-6)
        np.testing.assert_allclose(np.zeros((8, 8)), read(target, f'Phase_ifg{TAG}'), atol=1e-6)

    def test_constant_phase_rotation(self):
        theta = 1.1
        image = synthetic.unit_image(8, 8, seed=2)
        target = interferogram.createInterferogram(synthetic.create_stack(image, image * np.exp(-1j * theta)),
                                                   parameters())

        phase = np.arctan2(read(target, f'q_ifg{TAG}'), read(target, f'i_ifg{TAG}'))
        np.testing.assert_allclose(np.full((6, 6), theta), phase[1:-1, 1:-1], atol=1e-6)
        np.testing.assert_allclose(np.ones((8, 8)), read(target, f'coh{TAG}'), atol=1e-6)

    def test_coherence_in_unit_interval(self):
        master = synthetic.random_image(20, 20, seed=1)
        slave = master + synthetic.random_image(20, 20, seed=2)
        target = interferogram.createInterferogram(synthetic.create_stack(master, slave), parameters(win=5),
                                                   tile_size=7, processes=3)
        coh = read(target, f'coh{TAG}')
        self.assertTrue(np.all(coh >= 0.0))
        self.assertTrue(np.all(coh <= 1.0 + 1e-6))
        self.assertLess(coh.mean(), 0.95)

    def test_tiles_do_not_change_result(self):
        master = synthetic.random_image(20, 24, seed=3)
        slave = synthetic.random_image(20, 24, seed=4)
        one_tile = interferogram.createInterferogram(synthetic.create_stack(master, slave), parameters(win=4),
                                                     tile_size=64)
        many_tiles = interferogram.createInterferogram(synthetic.create_stack(master, slave), parameters(win=4),
                                                       tile_size=5)
        for name in (f'i_ifg{TAG}', f'q_ifg{TAG}', f'coh{TAG}'):
            np.testing.assert_allclose(read(one_tile, name), read(many_tiles, name), atol=1e-6)

    def test_no_data_propagation(self):
        no_data_value = -9999.0
        master = synthetic.unit_image(8, 8, seed=5)
        slave = master.copy()
        master[2, 3] = no_data_value
        slave[5, 6] = no_data_value + 1j
        params = parameters()
        target = interferogram.createInterferogram(
            synthetic.create_stack(master, slave, no_data_value=no_data_value), params)

        for name in (f'i_ifg{TAG}', f'q_ifg{TAG}', f'coh{TAG}'):
            values = read(target, name)
            self.assertEqual(no_data_value, values[2, 3])
            self.assertEqual(no_data_value, values[5, 6])
            self.assertEqual(2, np.count_nonzero(values == no_data_value))

    def test_flat_earth_subtraction(self):
        image = synthetic.unit_image(32, 32, seed=6)
        params = parameters(subtract_flat_earth_phase=True)
        params.srp_polynomial_degree = 3
        params.srp_number_points = 301
        params.output_flat_earth_phase = True
        op = interferogram.InterferogramOp(synthetic.create_stack(image, image), params)
        target = op.initialize()
        self.assertTrue(op.compute(tile_size=16))

        fep = read(target, f'fep{TAG}')
        polynomial = op.cache.get(flat_earth.scene_key(op.stack.pairs[0]), None)
        np.testing.assert_allclose(polynomial.evaluate_window(Window(0, 0, 32, 32)), fep, rtol=1e-6)

        ifg = read(target, f'i_ifg{TAG}') + 1j * read(target, f'q_ifg{TAG}')
        np.testing.assert_allclose(np.ones((32, 32)), np.abs(ifg), atol=1e-5)
        reference = polynomial.evaluate_window(Window(0, 0, 32, 32))
        np.testing.assert_allclose(np.zeros((32, 32)), np.angle(ifg * np.exp(1j * reference)), atol=1e-4)
        np.testing.assert_allclose(np.ones((32, 32)), read(target, f'coh{TAG}'), atol=1e-5)
        self.assertEqual(1, len(op.cache))

    def test_missing_orbit_aborts_initialization(self):
        image = synthetic.unit_image(8, 8)
        op = interferogram.InterferogramOp(synthetic.create_stack(image, image, with_orbit=False),
                                           parameters(subtract_flat_earth_phase=True))
        with self.assertRaises(GeometryError):
            op.initialize()

    def test_invalid_parameters(self):
        image = synthetic.unit_image(8, 8)
        params = parameters()
        params.srp_polynomial_degree = 9
        with self.assertRaises(ConfigurationError):
            interferogram.InterferogramOp(synthetic.create_stack(image, image), params).initialize()

    def test_failed_tile_writes_nothing(self):
        image = synthetic.unit_image(8, 8)
        op = interferogram.InterferogramOp(synthetic.create_stack(image, image), parameters())
        target = op.initialize()

        def broken(*args):
            raise FloatingPointError("broken")

        op.window_coherence = broken
        with self.assertRaises(ProcessingError) as context:
            op.compute_tile(Window(0, 0, 8, 8))
        self.assertIsInstance(context.exception.__cause__, FloatingPointError)
        np.testing.assert_array_equal(np.zeros((8, 8)), read(target, f'i_ifg{TAG}'))

    def test_cancellation(self):
        image = synthetic.unit_image(8, 8)
        op = interferogram.InterferogramOp(synthetic.create_stack(image, image), parameters())
        target = op.initialize()
        cancel = threading.Event()
        cancel.set()
        progress = []
        self.assertFalse(op.compute(tile_size=4, cancel_event=cancel,
                                    output=lambda name, current, total: progress.append((current, total))))
        self.assertEqual(4, len(progress))
        np.testing.assert_array_equal(np.zeros((8, 8)), read(target, f'i_ifg{TAG}'))

    def test_elevation_band_is_copied(self):
        image = synthetic.unit_image(8, 8)
        stack = synthetic.create_stack(image, image)
        stack.add_band('elevation', 'meters')
        target = interferogram.InterferogramOp(stack, parameters()).initialize()
        self.assertIn('elevation', target.band_names())
        self.assertEqual('stack_Ifg', target.name)


class BurstTest(unittest.TestCase):

    def setUp(self):
        self.swath = burst.createSubSwath('IW1', 10, 20, [0.0, 0.5, 1.0, 1.5], 1e-3, 5e-3, 2.3)

    def test_burst_ranges(self):
        b = self.swath.burst(2)
        self.assertEqual((20, 29), b.line_range)
        self.assertEqual((0, 19), b.pixel_range)
        self.assertAlmostEqual(1.0 + 5 * 1e-3, b.line_to_azimuth_time(25))
        with self.assertRaises(IndexError):
            self.swath.burst(4)

    def test_partition_covers_tile_once(self):
        strategy = segmentation.BurstSegmented(self.swath)
        for window in (Window(3, 0, 10, 40), Window(0, 7, 20, 5), Window(5, 12, 4, 3), Window(0, 29, 20, 2)):
            covered = np.zeros((40, 20), dtype=int)
            for segment in strategy.segments(window):
                w = segment.window
                covered[w.row_off:w.row_off + w.height, w.col_off:w.col_off + w.width] += 1
                self.assertGreaterEqual(w.row_off, segment.line_range[0])
                self.assertLessEqual(w.row_off + w.height - 1, segment.line_range[1])

            expected = np.zeros((40, 20), dtype=int)
            expected[window.row_off:window.row_off + window.height, window.col_off:window.col_off + window.width] = 1
            np.testing.assert_array_equal(expected, covered)

    def test_segment_keys(self):
        segments = segmentation.BurstSegmented(self.swath).segments(Window(0, 7, 20, 5))
        self.assertEqual([0, 1], [segment.burst_index for segment in segments])
        self.assertTrue(all(segment.subswath_index == 0 for segment in segments))

    def test_whole_scene(self):
        segments = segmentation.WholeScene(20, 40).segments(Window(0, 7, 20, 5))
        self.assertEqual(1, len(segments))
        self.assertFalse(segments[0].is_burst)
        self.assertEqual((0, 39), segments[0].line_range)


class TopsarInterferogramTest(unittest.TestCase):

    def test_bursts_with_flat_earth(self):
        image = synthetic.unit_image(24, 16, seed=8)
        stack = synthetic.create_topsar_stack(image, image, 8)
        params = parameters(subtract_flat_earth_phase=True)
        params.srp_polynomial_degree = 2
        params.srp_number_points = 101
        params.output_flat_earth_phase = True
        op = interferogram.InterferogramOp(stack, params)
        target = op.initialize()
        self.assertTrue(op.is_topsar)
        self.assertEqual(3, len(op.burst_scene_centres))
        self.assertTrue(op.compute(tile_size=10))
        self.assertEqual(3, len(op.cache))

        tag = '_IW1' + TAG
        coh = read(target, f'coh{tag}')
        self.assertTrue(np.all(np.isfinite(coh)))
        self.assertTrue(np.all(coh <= 1.0 + 1e-5))
        for b in range(3):
            np.testing.assert_allclose(np.ones((6, 16)), coh[b * 8 + 1:b * 8 + 7], atol=1e-5)
        # products of the neighbouring burst are left out, their powers are not
        for line in (7, 8, 15, 16):
            self.assertTrue(np.all(coh[line] < 0.9))

        fep = read(target, f'fep{tag}')
        for b in range(3):
            polynomial = op.cache.get(flat_earth.burst_key(op.stack.pairs[0], 0, b), None)
            np.testing.assert_allclose(polynomial.evaluate_window(Window(0, b * 8, 16, 8)), fep[b * 8:(b + 1) * 8],
                                       rtol=1e-6)

    def test_each_subswath_uses_its_own_geometry(self):
        image = synthetic.unit_image(16, 12, seed=9)
        stack = synthetic.create_topsar_stack(image, image, 8, swath_names=('IW1', 'IW2'))
        params = parameters(subtract_flat_earth_phase=True)
        params.srp_polynomial_degree = 2
        params.srp_number_points = 101
        params.output_flat_earth_phase = True
        op = interferogram.InterferogramOp(stack, params)
        target = op.initialize()
        self.assertEqual(['IW1', 'IW2'], sorted(op.segmentations.keys()))
        self.assertTrue(op.compute(tile_size=16))
        # two pairs with two bursts each, no polynomial for a mismatched sub-swath
        self.assertEqual(4, len(op.cache))

        for s, name in enumerate(('IW1', 'IW2')):
            pair = op.stack.pair(f'1000_{name}_1176_{name}')
            segments = op.segmentation_for(pair).segments(Window(0, 0, 12, 16))
            self.assertEqual([s, s], [segment.subswath_index for segment in segments])

            fep = read(target, f'fep_{name}{TAG}')
            for b in range(2):
                expected = flat_earth.estimate_burst_flat_earth_polynomial(
                    pair.master, pair.slave, s, b, op.burst_scene_centres[(s, b)], 2, 101)
                used = op.cache.get(flat_earth.burst_key(pair, s, b), None)
                np.testing.assert_allclose(expected.coefficients, used.coefficients, rtol=1e-9, atol=1e-9)
                np.testing.assert_allclose(expected.evaluate_window(Window(0, b * 8, 12, 8)),
                                           fep[b * 8:(b + 1) * 8], rtol=1e-6)

        first = op.cache.get(flat_earth.burst_key(op.stack.pair('1000_IW1_1176_IW1'), 0, 0), None)
        second = op.cache.get(flat_earth.burst_key(op.stack.pair('1000_IW2_1176_IW2'), 1, 0), None)
        self.assertGreater(abs(first.coefficients[0] - second.coefficients[0]), 1.0)


if __name__ == '__main__':
    unittest.main()
