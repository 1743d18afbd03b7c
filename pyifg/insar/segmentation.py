from rasterio.windows import Window


class Segment:
    """
    Part of a requested tile computed with one flat earth polynomial. `line_range` and `pixel_range`
    are the inclusive image extents the polynomial is normalised with.
    """

    def __init__(self, window: Window, line_range, pixel_range, subswath_index: int = None,
                 burst_index: int = None):
        self.window = window
        self.line_range = tuple(line_range)
        self.pixel_range = tuple(pixel_range)
        self.subswath_index = subswath_index
        self.burst_index = burst_index

    @property
    def is_burst(self) -> bool:
        return self.burst_index is not None


class WholeScene:
    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height

    def segments(self, window: Window):
        return [Segment(window, (0, self.height - 1), (0, self.width - 1))]


class BurstSegmented:
    """Splits a tile at the burst boundaries of a TOPSAR sub-swath."""

    def __init__(self, subswath, subswath_index: int = 0):
        self.subswath = subswath
        self.subswath_index = subswath_index

    def segments(self, window: Window):
        y0 = int(window.row_off)
        y_max = y0 + int(window.height)
        result = []
        for burst in self.subswath.bursts():
            first_line, last_line = burst.line_range
            if y_max <= first_line or y0 > last_line:
                continue

            ny0 = max(y0, first_line)
            ny_max = min(y_max, last_line + 1)
            part = Window(window.col_off, ny0, window.width, ny_max - ny0)
            result.append(Segment(part, burst.line_range, burst.pixel_range, self.subswath_index, burst.index))
        return result


def fromMetaData(metadata, width: int, height: int) -> dict:
    """Segmentation per sub-swath name; a single whole scene entry keyed '' for stripmap stacks."""
    if metadata.is_topsar:
        return {swath.name: BurstSegmented(swath, s) for s, swath in enumerate(metadata.subswaths)}
    return {'': WholeScene(width, height)}
