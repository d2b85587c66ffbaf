__version__ = "1.0.0"

# Public API resolved lazily so importing the package stays cheap.

_EXPORTS = {
    "get_z": "stats",
    "calc_sample_size": "stats",
    "calc_stratified_sample_size": "stats",
    "sample_with_replacement": "draws",
    "sample_without_replacement": "draws",
    "load_dataset": "ingest",
    "extract_year": "ingest",
    "calculate": "calculator",
    "export_workbook": "reporter",
    "SamplingSession": "session",
}


def __getattr__(name: str):
    if name in _EXPORTS:
        from importlib import import_module

        module = import_module(f".{_EXPORTS[name]}", __name__)
        return getattr(module, name)
    raise AttributeError(name)
