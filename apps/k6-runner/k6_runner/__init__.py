"""Compile XLSX/CSV test cases into k6 scripts and run them scenario by scenario."""

__version__ = "0.3.0"
