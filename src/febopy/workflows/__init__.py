from .energy_audit import main, run_energy_audit, write_input_template

__all__ = ["main", "run_energy_audit", "write_input_template"]
