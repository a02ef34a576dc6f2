from .csv_table import read_csv
from .json_array import read_json
from .npy import read_npy

__all__ = ["read_csv", "read_json", "read_npy"]
