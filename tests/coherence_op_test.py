import unittest
import argparse
import numpy as np

from pyifg.insar import coherence_op, parameters
from pyifg.insar.parameters import InterferogramParameters
import synthetic

TAG = '_12Jan2020_24Jan2020'


class CoherenceOpTest(unittest.TestCase):

    def setUp(self):
        self.params = InterferogramParameters()
        self.params.coh_win_az = 3
        self.params.coh_win_rg = 3
        self.params.subtract_flat_earth_phase = False

    def run_op(self, stack):
        op = coherence_op.CoherenceOp(stack, self.params)
        target = op.initialize()
        self.assertTrue(op.compute(tile_size=5))
        return op, target

    def test_bands(self):
        image = synthetic.unit_image(10, 10)
        _, target = self.run_op(synthetic.create_stack(image, image))
        self.assertEqual('stack_Coh', target.name)
        self.assertEqual([f'coh{TAG}'], target.band_names())
        self.assertEqual([f'coh{TAG}'], target.slave_band_names['SYN_2020-01-24'])
        np.testing.assert_allclose(np.ones((10, 10)), target.get_band(f'coh{TAG}').read(), atol=1e-6)

    def test_phase_band_with_flat_earth(self):
        image = synthetic.unit_image(16, 16, seed=3)
        self.params.subtract_flat_earth_phase = True
        self.params.srp_polynomial_degree = 2
        self.params.srp_number_points = 101
        op, target = self.run_op(synthetic.create_stack(image, image))
        self.assertEqual([f'coh{TAG}', f'Phase_coh{TAG}'], target.band_names())

        np.testing.assert_allclose(np.ones((16, 16)), target.get_band(f'coh{TAG}').read(), atol=1e-5)
        phase = target.get_band(f'Phase_coh{TAG}').read()
        self.assertTrue(np.all(np.abs(phase) <= np.pi + 1e-6))
        self.assertEqual(1, len(op.cache))

    def test_no_data(self):
        no_data_value = -1.0e4
        master = synthetic.unit_image(10, 10, seed=4)
        master[0, 0] = no_data_value
        _, target = self.run_op(synthetic.create_stack(master, master.copy(), no_data_value=no_data_value))
        band = target.get_band(f'coh{TAG}')
        self.assertEqual(no_data_value, band.no_data_value)
        values = band.read()
        self.assertEqual(no_data_value, values[0, 0])
        self.assertEqual(1, np.count_nonzero(values == no_data_value))

    def test_flat_earth_is_off_by_default(self):
        image = synthetic.unit_image(8, 8, seed=5)
        op = coherence_op.CoherenceOp(synthetic.create_stack(image, image, with_orbit=False))
        self.assertFalse(op.parameters.subtract_flat_earth_phase)
        target = op.initialize()
        self.assertTrue(op.compute(tile_size=8))
        self.assertEqual([f'coh{TAG}'], target.band_names())
        self.assertEqual(0, len(op.cache))

    def test_default_from_args(self):
        args = argparse.Namespace(coh_win_az=4, subtract_flat_earth_phase=None)
        params = parameters.fromArgs(args, parameters.CoherenceParameters)
        self.assertFalse(params.subtract_flat_earth_phase)
        self.assertEqual(4, params.coh_win_az)

        args.subtract_flat_earth_phase = True
        self.assertTrue(parameters.fromArgs(args, parameters.CoherenceParameters).subtract_flat_earth_phase)
        self.assertTrue(parameters.fromArgs(argparse.Namespace()).subtract_flat_earth_phase)


if __name__ == '__main__':
    unittest.main()
