from febopy.io.documents import load_document, load_document_mapping
from febopy.io.functions import PythonFunctionRegistry, import_locator
from febopy.io.provider import ArrayDataProvider, DocumentDataProvider, data_provider_from_document
from febopy.io.readers import read_csv, read_json, read_npy
from febopy.io.registry import get_reader, list_readers, read_source, register_reader


register_reader("npy", read_npy)
register_reader("csv", read_csv)
register_reader("json", read_json)

__all__ = [
    "register_reader",
    "get_reader",
    "list_readers",
    "read_source",
    "read_npy",
    "read_csv",
    "read_json",
    "load_document",
    "load_document_mapping",
    "ArrayDataProvider",
    "DocumentDataProvider",
    "data_provider_from_document",
    "PythonFunctionRegistry",
    "import_locator",
]
