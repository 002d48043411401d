"""Statutory payroll run engine.

Computes EPF/ETF/PAYE-compliant payslips for a monthly pay period and
manages the run workflow that commits them as one immutable payroll run.
"""

__version__ = "0.1.0"
