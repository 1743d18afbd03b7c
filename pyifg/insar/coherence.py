import numpy as np
from rasterio.windows import Window


def extended_window(window: Window, win_az: int, win_rg: int) -> Window:
    """Window grown by the coherence window so that every pixel of `window` has a full estimation window."""
    return Window(window.col_off - (win_rg - 1) // 2,
                  window.row_off - (win_az - 1) // 2,
                  window.width + win_rg - 1,
                  window.height + win_az - 1)


def _range_sums(data: np.ndarray, win_rg: int) -> np.ndarray:
    cols = data.shape[1] - win_rg + 1
    sums = data[:, 0:cols].copy()
    for offset in range(1, win_rg):
        sums += data[:, offset:offset + cols]
    return sums


def _azimuth_moving_sums(data: np.ndarray, win_az: int) -> np.ndarray:
    rows = data.shape[0] - win_az + 1
    sums = np.empty((rows,) + data.shape[1:], dtype=data.dtype)
    current = data[0:win_az].sum(axis=0)
    sums[0] = current
    for i in range(1, rows):
        current = current + data[i + win_az - 1] - data[i - 1]
        sums[i] = current
    return sums


def coherence_from_products(products: np.ndarray, power_master: np.ndarray, power_slave: np.ndarray,
                            win_az: int, win_rg: int) -> np.ndarray:
    """
    Complex coherence from the interferometric products master * conj(slave) and the powers of both images.

    The window sums are built per range window first and then moved along azimuth, adding the entering row
    and subtracting the leaving one. Where the power product is not positive the coherence is zero.

    :return: Complex array of shape (rows - win_az + 1, cols - win_rg + 1)
    """
    rows, cols = products.shape
    if rows < win_az or cols < win_rg:
        raise ValueError(f"Input of shape {products.shape} is smaller than the {win_az} x {win_rg} window")

    sum_products = _azimuth_moving_sums(_range_sums(products.astype(np.complex128), win_rg), win_az)
    sum_master = _azimuth_moving_sums(_range_sums(power_master.astype(np.float64), win_rg), win_az)
    sum_slave = _azimuth_moving_sums(_range_sums(power_slave.astype(np.float64), win_rg), win_az)

    power = sum_master * sum_slave
    coherence = np.zeros(sum_products.shape, dtype=np.complex128)
    valid = power > 0
    coherence[valid] = sum_products[valid] / np.sqrt(power[valid])
    return coherence


def complex_coherence(master: np.ndarray, slave: np.ndarray, win_az: int, win_rg: int, line_range=None,
                      first_line: int = 0) -> np.ndarray:
    """
    Complex coherence of two extended tiles.

    Args:
        master (np.ndarray): Complex master tile, extended by the coherence window.
        slave (np.ndarray): Complex slave tile of the same shape.
        win_az (int): Window size in azimuth (rows).
        win_rg (int): Window size in range (columns).
        line_range (tuple): Inclusive image lines owned by the current burst. Products of rows outside are
            set to zero, the powers are kept.
        first_line (int): Image line of the first tile row.

    Returns:
        np.ndarray: Complex coherence with the shape of the unextended tile.
    """
    if master.shape != slave.shape:
        raise ValueError(f"Master {master.shape} and slave {slave.shape} tiles differ in shape")

    products = master * np.conj(slave)
    if line_range is not None:
        lines = first_line + np.arange(master.shape[0])
        outside = (lines < line_range[0]) | (lines > line_range[1])
        products[outside, :] = 0

    return coherence_from_products(products, np.abs(master) ** 2, np.abs(slave) ** 2, win_az, win_rg)


def square_pixel_window(coh_win_rg: int, range_spacing: float, azimuth_spacing: float, srgr_flag: bool = False,
                        incidence_angle: float = None):
    """
    Coherence window which is about square on ground for a given range size.

    The slant range spacing is projected to ground with the incidence angle (degrees) unless the image is
    already in ground range. If the azimuth size would drop below one line, the azimuth size becomes one and
    the range size is derived from it instead.

    :return: (win_az, win_rg)
    """
    if range_spacing is None or azimuth_spacing is None:
        range_spacing = 1.0
        azimuth_spacing = 1.0

    ground_range_spacing = range_spacing
    if not srgr_flag and incidence_angle is not None:
        ground_range_spacing = range_spacing / np.sin(np.radians(incidence_angle))

    win_az = coh_win_rg * ground_range_spacing / azimuth_spacing
    if win_az < 1.0:
        return 1, int(np.floor(azimuth_spacing / ground_range_spacing + 0.5))
    return int(np.floor(win_az + 0.5)), coh_win_rg
