import unittest
import numpy as np
from rasterio.windows import Window

from pyifg.insar import coherence
import synthetic


def brute_force_coherence(master, slave, win_az, win_rg):
    rows = master.shape[0] - win_az + 1
    cols = master.shape[1] - win_rg + 1
    result = np.zeros((rows, cols), dtype=complex)
    for y in range(rows):
        for x in range(cols):
            m = master[y:y + win_az, x:x + win_rg]
            s = slave[y:y + win_az, x:x + win_rg]
            power = np.sum(np.abs(m) ** 2) * np.sum(np.abs(s) ** 2)
            if power > 0:
                result[y, x] = np.sum(m * np.conj(s)) / np.sqrt(power)
    return result


class CoherenceTest(unittest.TestCase):

    def test_identical_images(self):
        image = synthetic.random_image(20, 30)
        coh = coherence.complex_coherence(image, image, 5, 3)
        self.assertEqual((16, 28), coh.shape)
        np.testing.assert_allclose(np.ones(coh.shape), np.abs(coh), atol=1e-12)
        np.testing.assert_allclose(np.zeros(coh.shape), np.angle(coh), atol=1e-12)

    def test_constant_rotation(self):
        image = synthetic.random_image(12, 12, seed=3)
        theta = 0.7
        coh = coherence.complex_coherence(image, image * np.exp(-1j * theta), 3, 3)
        np.testing.assert_allclose(np.ones(coh.shape), np.abs(coh), atol=1e-12)
        np.testing.assert_allclose(np.full(coh.shape, theta), np.angle(coh), atol=1e-12)

    def test_magnitude_in_unit_interval(self):
        master = synthetic.random_image(40, 40, seed=1)
        slave = synthetic.random_image(40, 40, seed=2)
        coh = np.abs(coherence.complex_coherence(master, slave, 4, 7))
        self.assertTrue(np.all(coh >= 0.0))
        self.assertTrue(np.all(coh <= 1.0 + 1e-6))

    def test_matches_direct_window_sums(self):
        master = synthetic.random_image(15, 11, seed=4)
        slave = master + 0.5 * synthetic.random_image(15, 11, seed=5)
        expected = brute_force_coherence(master, slave, 4, 3)
        np.testing.assert_allclose(expected, coherence.complex_coherence(master, slave, 4, 3), atol=1e-12)

    def test_zero_power_gives_zero(self):
        master = np.zeros((6, 6), dtype=complex)
        slave = synthetic.random_image(6, 6)
        np.testing.assert_array_equal(np.zeros((4, 4)), coherence.complex_coherence(master, slave, 3, 3))

    def test_burst_lines_outside_are_excluded(self):
        master = synthetic.random_image(10, 8, seed=6)
        slave = master.copy()
        slave[:3] = synthetic.random_image(3, 8, seed=7)

        coh = coherence.complex_coherence(master, slave, 3, 3, line_range=(103, 200), first_line=100)
        products = master * np.conj(slave)
        products[:3] = 0
        expected = coherence.coherence_from_products(products, np.abs(master) ** 2, np.abs(slave) ** 2, 3, 3)
        np.testing.assert_allclose(expected, coh)
        np.testing.assert_allclose(np.ones(5), np.abs(coh[3:, 0]), atol=1e-12)

    def test_shape_mismatch(self):
        with self.assertRaises(ValueError):
            coherence.complex_coherence(np.ones((4, 4)), np.ones((4, 5)), 3, 3)

    def test_window_larger_than_tile(self):
        with self.assertRaises(ValueError):
            coherence.complex_coherence(np.ones((2, 4)), np.ones((2, 4)), 3, 3)

    def test_extended_window(self):
        extended = coherence.extended_window(Window(100, 50, 20, 10), 10, 3)
        self.assertEqual((99, 46, 22, 19), (extended.col_off, extended.row_off, extended.width, extended.height))

    def test_square_pixel_window(self):
        # slant range 2 m at 30 deg incidence is 4 m on ground
        self.assertEqual((6, 10), coherence.square_pixel_window(10, 2.0, 7.0, False, 30.0))
        self.assertEqual((3, 10), coherence.square_pixel_window(10, 2.0, 7.0, True, 30.0))
        self.assertEqual((1, 4), coherence.square_pixel_window(1, 2.0, 14.0, False, 30.0))
        self.assertEqual((5, 5), coherence.square_pixel_window(5, None, None))


if __name__ == '__main__':
    unittest.main()
