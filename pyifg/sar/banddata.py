import pathlib
import threading
import xml.etree.ElementTree as ET
import numpy as np
import rasterio
from rasterio.windows import Window


def _intersection(window: Window, width: int, height: int):
    """Part of `window` inside a width x height image as (row0, row1, col0, col1), or None."""
    row0 = max(int(window.row_off), 0)
    col0 = max(int(window.col_off), 0)
    row1 = min(int(window.row_off + window.height), height)
    col1 = min(int(window.col_off + window.width), width)
    if row0 >= row1 or col0 >= col1:
        return None
    return row0, row1, col0, col1


# Single float band of a raster product
class IBandData:
    def getWidth(self) -> int:
        return 0

    def getHeight(self) -> int:
        return 0

    def read(self, window: Window = None, boundless: bool = True) -> np.ndarray:
        raise NotImplementedError

    def write(self, window: Window, values: np.ndarray):
        raise NotImplementedError

    def saveFloatTiff(self, filename, floatData: np.ndarray, no_data_value: float = None):
        metadata = {
            "driver": "GTiff",
            "height": floatData.shape[0],
            "width": floatData.shape[1],
            "count": 1,
            "dtype": np.float32,
            "transform": rasterio.Affine.identity(),  # Identity transform (no georeferencing)
        }
        if no_data_value is not None:
            metadata["nodata"] = no_data_value

        with rasterio.open(filename, "w", **metadata) as dst:
            dst.write(floatData.astype(np.float32), 1)

    def toXml(self, root: ET.Element, relative_path_to_filename: str):
        file_path_elem = ET.SubElement(root, "FilePath")
        file_path_elem.text = str(relative_path_to_filename)


class MemoryBandData(IBandData):
    def __init__(self, data: np.ndarray):
        self.data = data

    def getWidth(self) -> int:
        return self.data.shape[1]

    def getHeight(self) -> int:
        return self.data.shape[0]

    def read(self, window: Window = None, boundless: bool = True) -> np.ndarray:
        """
        Reads a window of the band. With `boundless` the window may extend beyond the image,
        samples outside are zero.
        """
        if window is None:
            return self.data.copy()

        if not boundless:
            row0, col0 = int(window.row_off), int(window.col_off)
            return self.data[row0:row0 + int(window.height), col0:col0 + int(window.width)].copy()

        result = np.zeros((int(window.height), int(window.width)), dtype=self.data.dtype)
        inside = _intersection(window, self.getWidth(), self.getHeight())
        if inside is not None:
            row0, row1, col0, col1 = inside
            result[row0 - int(window.row_off):row1 - int(window.row_off),
                   col0 - int(window.col_off):col1 - int(window.col_off)] = self.data[row0:row1, col0:col1]
        return result

    def write(self, window: Window, values: np.ndarray):
        row0, col0 = int(window.row_off), int(window.col_off)
        self.data[row0:row0 + values.shape[0], col0:col0 + values.shape[1]] = values


class TiffBandData(IBandData):
    """Single band GeoTIFF; writes go straight to the file."""

    def __init__(self, filename):
        self.filename = filename
        self.data = None
        self.writer = None
        self._lock = threading.Lock()

    def __openfile(self):
        if self.data is None:
            self.data = rasterio.open(self.filename)

    def getWidth(self) -> int:
        with self._lock:
            self.__openfile()
            return self.data.width

    def getHeight(self) -> int:
        with self._lock:
            self.__openfile()
            return self.data.height

    def read(self, window: Window = None, boundless: bool = True) -> np.ndarray:
        # rasterio datasets are not thread safe
        with self._lock:
            self.__openfile()
            if window is None:
                return self.data.read(1)
            if boundless:
                return self.data.read(1, window=window, boundless=True, fill_value=0)
            return self.data.read(1, window=window)

    def write(self, window: Window, values: np.ndarray):
        with self._lock:
            if self.writer is None:
                self.writer = rasterio.open(self.filename, "r+")
            self.writer.write(values.astype(self.writer.dtypes[0]), 1, window=window)

    def close(self):
        with self._lock:
            for dataset in (self.data, self.writer):
                if dataset is not None:
                    dataset.close()
            self.data = None
            self.writer = None


def createMemoryBandData(width: int, height: int, fill_value: float = 0.0) -> MemoryBandData:
    return MemoryBandData(np.full((height, width), fill_value, dtype=np.float32))


def fromXml(root: ET.Element, xml_file_path: str) -> TiffBandData:
    file_path_elem = root.find("FilePath")
    file_name = file_path_elem.text
    fullpath = pathlib.Path(xml_file_path).parent / file_name
    return TiffBandData(fullpath)
